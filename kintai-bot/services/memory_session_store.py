import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from services.clock_time import utc_now
from services.session_store import (
    AcquireResult,
    DEFAULT_TTL_SECONDS,
    SessionKey,
    SessionRecord,
    SessionStore,
)


class MemorySessionStore(SessionStore):
    """TTL付きのキー・バリューによるセッションストア

    有効期限は勤務の開始時刻から数え、台帳のスキャンと同じ基準で期限切れを判定する。
    期限切れのエントリは読み取り時に存在しないものとして扱う（暗黙の解除）。
    スケジューラのスレッドから purge_expired が呼ばれるため、threading.Lock で保護する。
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[SessionKey, tuple[SessionRecord, datetime]] = {}
        self._lock = threading.Lock()

    def _live_entry(self, key: SessionKey, now: datetime) -> Optional[SessionRecord]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        record, expires_at = entry
        if expires_at <= now:
            del self._entries[key]
            return None
        return record

    async def try_acquire_open(self, key: SessionKey, session: SessionRecord) -> AcquireResult:
        now = self._clock()
        with self._lock:
            existing = self._live_entry(key, now)
            if existing is not None:
                return AcquireResult(acquired=False, existing=replace(existing))
            self._entries[key] = (replace(session), session.start + self._ttl)
        return AcquireResult(acquired=True)

    async def confirm_open(self, key: SessionKey, session: SessionRecord) -> None:
        with self._lock:
            self._entries[key] = (replace(session), session.start + self._ttl)

    async def peek_open(self, key: SessionKey) -> Optional[SessionRecord]:
        with self._lock:
            record = self._live_entry(key, self._clock())
        return replace(record) if record else None

    async def release(self, key: SessionKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """期限切れエントリを削除して件数を返す"""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
