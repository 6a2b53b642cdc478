from graph.state import ClockState
from services.session_store import SessionStore


async def mirror_node(state: ClockState, session_store: SessionStore = None) -> dict:
    """台帳への追記後、セッションストアに開いている勤務を記録するノード"""
    session = state["session"]
    await session_store.confirm_open(session.key, session)
    return {"outcome": "opened", "trace": ["mirror"]}
