# graph/graph.py
from functools import partial

from langgraph.graph import StateGraph, END
from graph.state import ClockState


def route_after_start_gate(state: ClockState) -> str:
    if state.get("outcome") in ("future_time", "start_too_old"):
        return "end"
    return "acquire"


def route_after_acquire(state: ClockState) -> str:
    if state.get("outcome") == "already_open":
        return "end"
    return "ledger_append"


def route_after_lookup(state: ClockState) -> str:
    if state.get("outcome") == "not_open":
        return "end"
    return "end_gate"


def route_after_end_gate(state: ClockState) -> str:
    if state.get("outcome") == "end_before_start":
        return "end"
    return "ledger_close"


def route_after_ledger_close(state: ClockState) -> str:
    if state.get("outcome") == "not_open":
        return "end"
    return "release"


def build_open_graph(ledger=None, session_store=None, document_id: str = ""):
    """出勤（open）のグラフを構築して返す

    各ノード関数はサービス依存を持つため、functools.partialでラップして
    LangGraphが期待する (state) -> dict シグネチャに合わせる。
    """
    from graph.nodes.start_gate_node import start_gate_node
    from graph.nodes.acquire_node import acquire_node
    from graph.nodes.ledger_append_node import ledger_append_node
    from graph.nodes.mirror_node import mirror_node

    workflow = StateGraph(ClockState)

    workflow.add_node("start_gate", start_gate_node)
    workflow.add_node("acquire", partial(acquire_node, session_store=session_store))
    workflow.add_node(
        "ledger_append",
        partial(
            ledger_append_node,
            ledger=ledger,
            session_store=session_store,
            document_id=document_id,
        ),
    )
    workflow.add_node("mirror", partial(mirror_node, session_store=session_store))

    workflow.set_entry_point("start_gate")

    workflow.add_conditional_edges(
        "start_gate",
        route_after_start_gate,
        {"acquire": "acquire", "end": END},
    )
    workflow.add_conditional_edges(
        "acquire",
        route_after_acquire,
        {"ledger_append": "ledger_append", "end": END},
    )

    workflow.add_edge("ledger_append", "mirror")
    workflow.add_edge("mirror", END)

    return workflow.compile()


def build_close_graph(ledger=None, session_store=None, document_id: str = ""):
    """退勤（close）のグラフを構築して返す"""
    from graph.nodes.lookup_node import lookup_node
    from graph.nodes.end_gate_node import end_gate_node
    from graph.nodes.ledger_close_node import ledger_close_node
    from graph.nodes.release_node import release_node

    workflow = StateGraph(ClockState)

    workflow.add_node("lookup", partial(lookup_node, session_store=session_store))
    workflow.add_node("end_gate", end_gate_node)
    workflow.add_node(
        "ledger_close",
        partial(
            ledger_close_node,
            ledger=ledger,
            session_store=session_store,
            document_id=document_id,
        ),
    )
    workflow.add_node("release", partial(release_node, session_store=session_store))

    workflow.set_entry_point("lookup")

    workflow.add_conditional_edges(
        "lookup",
        route_after_lookup,
        {"end_gate": "end_gate", "end": END},
    )
    workflow.add_conditional_edges(
        "end_gate",
        route_after_end_gate,
        {"ledger_close": "ledger_close", "end": END},
    )
    workflow.add_conditional_edges(
        "ledger_close",
        route_after_ledger_close,
        {"release": "release", "end": END},
    )
    workflow.add_edge("release", END)

    return workflow.compile()
