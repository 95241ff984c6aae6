from __future__ import annotations

from collections.abc import Awaitable, Callable

from langgraph.graph import END, StateGraph

from ledger_onboarding.orchestrator.nodes import (
    OnboardingDeps,
    check_store_node,
    entry_node,
    finish_node,
    register_node,
    route_after_check,
    route_after_entry,
    route_after_register,
    route_after_store,
    store_credential_node,
    submit_ledger_node,
)
from ledger_onboarding.orchestrator.state import OnboardingState


def build_graph(*, deps: OnboardingDeps):
    """
    Returns the compiled onboarding state machine.

    entry -> check_store -> register -> store_credential -> submit_ledger -> finish,
    with conditional skips for already-satisfied stages and a direct exit to `finish`
    on any failure.
    """

    graph = StateGraph(OnboardingState)

    graph.add_node("entry", entry_node)
    graph.add_node("check_store", _bind_deps(check_store_node, deps))
    graph.add_node("register", _bind_deps(register_node, deps))
    graph.add_node("store_credential", _bind_deps(store_credential_node, deps))
    graph.add_node("submit_ledger", _bind_deps(submit_ledger_node, deps))
    graph.add_node("finish", finish_node)

    graph.set_entry_point("entry")

    graph.add_conditional_edges(
        "entry",
        route_after_entry,
        {"check_store": "check_store", "finish": "finish"},
    )
    graph.add_conditional_edges(
        "check_store",
        route_after_check,
        {"register": "register", "submit_ledger": "submit_ledger", "finish": "finish"},
    )
    graph.add_conditional_edges(
        "register",
        route_after_register,
        {
            "store_credential": "store_credential",
            "submit_ledger": "submit_ledger",
            "finish": "finish",
        },
    )
    graph.add_conditional_edges(
        "store_credential",
        route_after_store,
        {"submit_ledger": "submit_ledger", "finish": "finish"},
    )
    graph.add_edge("submit_ledger", "finish")
    graph.add_edge("finish", END)

    return graph.compile()


def _bind_deps(
    fn: Callable[..., Awaitable[OnboardingState]],
    deps: OnboardingDeps,
) -> Callable[[OnboardingState], Awaitable[OnboardingState]]:
    async def _wrapped(state: OnboardingState) -> OnboardingState:
        return await fn(state, deps=deps)

    return _wrapped
