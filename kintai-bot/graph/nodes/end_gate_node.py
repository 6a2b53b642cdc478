# graph/nodes/end_gate_node.py
from graph.state import ClockState
from services.clock_time import format_duration


def end_gate_node(state: ClockState) -> dict:
    """退勤時刻を決定し、開始時刻より前でないか確認するノード"""
    end = state["requested"] or state["now"]
    start = state["session"].start
    if end < start:
        return {"outcome": "end_before_start", "end": end, "trace": ["end_gate"]}
    return {"end": end, "duration": format_duration(start, end), "trace": ["end_gate"]}
