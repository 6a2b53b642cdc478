from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

# 開きっぱなしのセッションが新しい出勤をブロックする期間
STALE_HORIZON = timedelta(hours=24)
DEFAULT_TTL_SECONDS = 86400


class SessionKey(NamedTuple):
    user_id: str
    channel_id: str


@dataclass
class SessionRecord:
    """1ユーザー・1チャンネルの勤務区間（出勤〜退勤）"""

    user_id: str
    channel_id: str
    display_name: str
    project_label: str
    start: datetime
    record_id: str
    sheet_name: str
    end: Optional[datetime] = None

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.user_id, self.channel_id)

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass
class AcquireResult:
    acquired: bool
    existing: Optional[SessionRecord] = None


class SessionStore(ABC):
    """「(user, channel) に開いている勤務がある」を記録するストアの抽象インターフェース

    同じキーへの try_acquire_open の同時呼び出しは、どちらか一方だけが成功すること。
    """

    @abstractmethod
    async def try_acquire_open(self, key: SessionKey, session: SessionRecord) -> AcquireResult:
        """未登録なら登録して acquired=True、既存があれば状態を変えずに existing を返す"""
        ...

    @abstractmethod
    async def confirm_open(self, key: SessionKey, session: SessionRecord) -> None:
        """台帳への追記が成功した後のミラー書き込み"""
        ...

    @abstractmethod
    async def peek_open(self, key: SessionKey) -> Optional[SessionRecord]:
        """現在開いているセッションを返す（状態は変えない）"""
        ...

    @abstractmethod
    async def release(self, key: SessionKey) -> None:
        """開いているセッションの記録を解除する"""
        ...
