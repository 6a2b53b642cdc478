# graph/nodes/start_gate_node.py
from graph.state import ClockState
from services.clock_time import is_future_relative_to
from services.session_store import STALE_HORIZON


def start_gate_node(state: ClockState) -> dict:
    """指定された出勤時刻が未来でなく、24時間より前でもないか確認するノード"""
    requested = state["requested"]
    if requested is not None:
        if is_future_relative_to(requested, state["now"]):
            return {"outcome": "future_time", "trace": ["start_gate"]}
        if state["now"] - requested >= STALE_HORIZON:
            return {"outcome": "start_too_old", "trace": ["start_gate"]}
    return {"trace": ["start_gate"]}
