from graph.state import ClockState
from services.session_store import SessionStore


async def release_node(state: ClockState, session_store: SessionStore = None) -> dict:
    """退勤の書き込み後、セッションストアの記録を解除するノード"""
    await session_store.release(state["session"].key)
    return {"outcome": "closed", "trace": ["release"]}
