import logging

from graph.state import ClockState
from services.ledger_interface import LedgerInterface
from services.ledger_rows import build_open_row, find_row_by_record_id, full_range
from services.session_store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)


async def _rollback(session_store: SessionStore, session: SessionRecord) -> None:
    try:
        await session_store.release(session.key)
    except Exception:
        logger.exception("Failed to release %s after append failure", session.key)


async def ledger_append_node(
    state: ClockState,
    ledger: LedgerInterface = None,
    session_store: SessionStore = None,
    document_id: str = "",
) -> dict:
    """台帳に出勤行を追記するノード。失敗時は確保を解除してから例外を再送出する"""
    session = state["session"]
    try:
        await ledger.ensure_monthly_sheet(document_id, session.sheet_name)
        if state["attempt"] > 1:
            values = await ledger.read_range(document_id, full_range(session.sheet_name))
            if find_row_by_record_id(values, session.record_id) is not None:
                logger.info("Row %s already appended by an earlier attempt", session.record_id)
                return {"trace": ["ledger_append"]}
        await ledger.append_row(document_id, session.sheet_name, build_open_row(session))
    except Exception:
        logger.warning("Append failed for %s, releasing open reservation", session.key)
        await _rollback(session_store, session)
        raise

    logger.info("Appended open row %s to %s", session.record_id, session.sheet_name)
    return {"trace": ["ledger_append"]}
