import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from services.clock_time import month_key, previous_month_key, utc_now
from services.ledger_interface import LedgerInterface
from services.ledger_rows import full_range, iter_open_rows, session_from_row
from services.session_store import (
    AcquireResult,
    STALE_HORIZON,
    SessionKey,
    SessionRecord,
    SessionStore,
)

logger = logging.getLogger(__name__)


class LedgerSessionStore(SessionStore):
    """台帳の行そのものを「開いている勤務」の正とするセッションストア

    開始時刻があり終了時刻が空で、開始から horizon 以内の行を開いている勤務とみなす。
    horizon を過ぎた行は自動で閉じず、新しい出勤も妨げない。

    読み取りから追記までの間の競合は、同一プロセス内では予約テーブルで直列化する。
    複数プロセスから同じキーへ同時に出勤した場合の競合は防げない。
    """

    def __init__(
        self,
        ledger: LedgerInterface,
        document_id: str,
        clock: Callable[[], datetime] = utc_now,
        horizon: timedelta = STALE_HORIZON,
    ):
        self._ledger = ledger
        self._document_id = document_id
        self._clock = clock
        self._horizon = horizon
        self._pending: dict[SessionKey, SessionRecord] = {}

    async def _scan(self, key: SessionKey) -> Optional[SessionRecord]:
        now = self._clock()
        for sheet_name in (month_key(now), previous_month_key(now)):
            values = await self._ledger.read_range(self._document_id, full_range(sheet_name))
            for row_number, cells in iter_open_rows(values, key.user_id, key.channel_id):
                session = session_from_row(cells, sheet_name)
                if session is None:
                    logger.warning("Unreadable start time in %s row %d", sheet_name, row_number)
                    continue
                if now - session.start < self._horizon:
                    return session
        return None

    async def try_acquire_open(self, key: SessionKey, session: SessionRecord) -> AcquireResult:
        pending = self._pending.get(key)
        if pending is not None:
            return AcquireResult(acquired=False, existing=pending)

        self._pending[key] = session
        try:
            existing = await self._scan(key)
        except Exception:
            self._pending.pop(key, None)
            raise
        if existing is not None:
            self._pending.pop(key, None)
            return AcquireResult(acquired=False, existing=existing)
        return AcquireResult(acquired=True)

    async def confirm_open(self, key: SessionKey, session: SessionRecord) -> None:
        # 行が追記されたので以後はスキャンで見つかる
        self._pending.pop(key, None)

    async def peek_open(self, key: SessionKey) -> Optional[SessionRecord]:
        return await self._scan(key)

    async def release(self, key: SessionKey) -> None:
        self._pending.pop(key, None)

    @property
    def pending_count(self) -> int:
        return len(self._pending)
