from graph.state import ClockState
from services.session_store import SessionKey, SessionStore


async def lookup_node(state: ClockState, session_store: SessionStore = None) -> dict:
    """開いている勤務を探すノード。再試行時は前回見つけた勤務を使う"""
    session = state["prior"]
    if session is None:
        key = SessionKey(state["user_id"], state["channel_id"])
        session = await session_store.peek_open(key)
    if session is None:
        return {"outcome": "not_open", "trace": ["lookup"]}
    return {"session": session, "trace": ["lookup"]}
