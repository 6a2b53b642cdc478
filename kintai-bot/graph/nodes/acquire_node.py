import logging

from graph.state import ClockState
from services.clock_time import month_key
from services.session_store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)


async def acquire_node(state: ClockState, session_store: SessionStore = None) -> dict:
    """(user, channel) に開いている勤務がなければ確保するノード"""
    start = state["requested"] or state["now"]
    session = SessionRecord(
        user_id=state["user_id"],
        channel_id=state["channel_id"],
        display_name=state["display_name"],
        project_label=state["project_label"],
        start=start,
        record_id=state["record_id"],
        sheet_name=month_key(start),
    )

    result = await session_store.try_acquire_open(session.key, session)
    if result.acquired:
        return {"session": session, "trace": ["acquire"]}

    existing = result.existing
    if existing is not None and existing.record_id == state["record_id"]:
        # 同じコマンドの前回の試行で確保済み
        logger.info("Open already acquired by record %s, resuming", state["record_id"])
        return {"session": existing, "trace": ["acquire"]}

    return {"outcome": "already_open", "conflict": existing, "trace": ["acquire"]}
