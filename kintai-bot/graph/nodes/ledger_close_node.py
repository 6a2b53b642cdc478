import logging

from graph.state import ClockState
from services.clock_time import format_jst
from services.ledger_interface import LedgerInterface
from services.ledger_rows import (
    END_TIME,
    build_close_cells,
    close_range,
    find_rows_by_record_id,
    full_range,
)
from services.session_store import SessionStore

logger = logging.getLogger(__name__)


async def ledger_close_node(
    state: ClockState,
    ledger: LedgerInterface = None,
    session_store: SessionStore = None,
    document_id: str = "",
) -> dict:
    """台帳の出勤行に差分・開始時刻・終了時刻を書き込むノード

    同じ record_id の行が複数ある場合は、終了時刻が空の行をすべて閉じる。
    """
    session = state["session"]
    end_text = format_jst(state["end"])

    values = await ledger.read_range(document_id, full_range(session.sheet_name))
    found = find_rows_by_record_id(values, session.record_id)
    if not found:
        logger.warning("Row %s not found in %s, dropping stale session", session.record_id, session.sheet_name)
        await session_store.release(session.key)
        return {"outcome": "not_open", "trace": ["ledger_close"]}

    open_rows = [row_number for row_number, cells in found if not cells[END_TIME]]
    if not open_rows:
        if any(cells[END_TIME] == end_text for _, cells in found):
            logger.info("Row %s already closed by an earlier attempt", session.record_id)
            return {"trace": ["ledger_close"]}
        logger.warning("Row %s was closed elsewhere at %s", session.record_id, found[0][1][END_TIME])
        await session_store.release(session.key)
        return {"outcome": "not_open", "trace": ["ledger_close"]}

    if len(found) > 1:
        logger.warning("Record %s has %d rows in %s", session.record_id, len(found), session.sheet_name)
    for row_number in open_rows:
        await ledger.update_range(
            document_id,
            close_range(session.sheet_name, row_number),
            build_close_cells(session, end_text, state["duration"]),
        )
    logger.info("Closed row %s (%s)", session.record_id, state["duration"])
    return {"trace": ["ledger_close"]}
