# services/session_machine.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from graph.graph import build_close_graph, build_open_graph
from graph.state import initial_state
from services.clock_time import utc_now
from services.errors import (
    AlreadyOpen,
    EndBeforeStart,
    FutureTimeRejected,
    NoteRequired,
    NotOpen,
    StartTooOld,
)
from services.ledger_interface import LedgerInterface
from services.session_store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class OpenResult:
    session: SessionRecord


@dataclass
class CloseResult:
    session: SessionRecord
    end: datetime
    duration: str
    note: str = ""


class SessionMachine:
    """1コマンド分の出勤・退勤の状態遷移（NONE → OPEN → CLOSED）

    now と record_id はコマンド受付時に1度だけ決まり、再試行しても変わらない。
    意味的な拒否は ClockError のサブクラスとして送出し、
    台帳の一時的な障害（BackendUnavailable など）はそのまま伝播させる。
    """

    def __init__(
        self,
        ledger: LedgerInterface,
        session_store: SessionStore,
        document_id: str,
        now: Optional[datetime] = None,
        record_id: Optional[str] = None,
    ):
        self._now = now or utc_now()
        self._record_id = record_id or str(uuid.uuid4())
        self._open_graph = build_open_graph(ledger, session_store, document_id)
        self._close_graph = build_close_graph(ledger, session_store, document_id)
        self._located: Optional[SessionRecord] = None

    @property
    def now(self) -> datetime:
        return self._now

    @property
    def record_id(self) -> str:
        return self._record_id

    async def _run(self, graph, state: dict) -> dict:
        """グラフを実行し、途中で例外が出ても見つけた勤務を覚えておく"""
        values = state
        try:
            async for values in graph.astream(state, stream_mode="values"):
                pass
        finally:
            if values.get("session") is not None and graph is self._close_graph:
                self._located = values["session"]
        return values

    async def handle_open(
        self,
        user_id: str,
        channel_id: str,
        display_name: str,
        project_label: str,
        requested: Optional[datetime] = None,
        attempt: int = 1,
    ) -> OpenResult:
        state = initial_state(
            user_id=user_id,
            channel_id=channel_id,
            display_name=display_name,
            project_label=project_label,
            now=self._now,
            requested=requested,
            record_id=self._record_id,
            attempt=attempt,
        )
        result = await self._run(self._open_graph, state)
        outcome = result["outcome"]
        logger.info("open %s/%s attempt %d: %s", user_id, channel_id, attempt, outcome)

        if outcome == "future_time":
            raise FutureTimeRejected(requested, self._now)
        if outcome == "start_too_old":
            raise StartTooOld(requested, self._now)
        if outcome == "already_open":
            conflict = result["conflict"]
            raise AlreadyOpen(
                conflict.start if conflict else None,
                conflict.project_label if conflict else "",
            )
        return OpenResult(session=result["session"])

    async def handle_close(
        self,
        user_id: str,
        channel_id: str,
        requested: Optional[datetime] = None,
        note: str = "",
        require_note: bool = True,
        attempt: int = 1,
    ) -> CloseResult:
        if require_note and not (note or "").strip():
            raise NoteRequired()

        state = initial_state(
            user_id=user_id,
            channel_id=channel_id,
            now=self._now,
            requested=requested,
            record_id=self._record_id,
            attempt=attempt,
            prior=self._located,
        )
        result = await self._run(self._close_graph, state)
        outcome = result["outcome"]
        logger.info("close %s/%s attempt %d: %s", user_id, channel_id, attempt, outcome)

        if outcome == "not_open":
            raise NotOpen()
        if outcome == "end_before_start":
            raise EndBeforeStart(result["session"].start, result["end"])
        return CloseResult(
            session=result["session"],
            end=result["end"],
            duration=result["duration"],
            note=(note or "").strip(),
        )
