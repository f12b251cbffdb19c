"""
LangGraph StateGraph builder for the TLSA rollover run.

Graph topology:
  START
    → domain_enumerator
    → [conditional: no_domains → summary_reporter → END]
    → pick_next_domain            ← loop entry point
    → certificate_inspector
    → [conditional on phase:  fresh   → fresh_publisher
                              cutover → cutover_finalizer
                              wait    → window_idle
                              stale   → window_idle
                              inspection failed → next_domain / all_done]
    → domain_loop_router
    → [conditional: next_domain → pick_next_domain]
                   all_done   → summary_reporter
    → END
"""
from __future__ import annotations

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from agent.nodes.actions import cutover_finalizer, fresh_publisher, window_idle
from agent.nodes.enumerator import domain_enumerator
from agent.nodes.inspector import certificate_inspector
from agent.nodes.reporter import summary_reporter
from agent.nodes.router import (
    domain_loop_router,
    enumeration_router,
    phase_router,
    pick_next_domain,
)
from agent.state import RolloverState
from dane.rollover import Phase

# Phase → action node.  The extra keys carry domains whose inspection failed.
PHASE_ROUTES = {
    Phase.FRESH.value: "fresh_publisher",
    Phase.WAIT.value: "window_idle",
    Phase.CUTOVER.value: "cutover_finalizer",
    Phase.STALE.value: "window_idle",
    "next_domain": "pick_next_domain",
    "all_done": "summary_reporter",
}

LOOP_ROUTES = {
    "next_domain": "pick_next_domain",
    "all_done": "summary_reporter",
}

# Each domain costs at most four supersteps; keep well clear of LangGraph's default of 25.
RECURSION_LIMIT = 10_000


def build_graph(use_checkpointing: bool = False):
    """
    Build and compile the rollover StateGraph.

    Args:
        use_checkpointing: If True, attach a MemorySaver for resumable runs.

    Returns:
        CompiledGraph ready to invoke / stream.
    """
    builder = StateGraph(RolloverState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("domain_enumerator", domain_enumerator)
    builder.add_node("pick_next_domain", pick_next_domain)
    builder.add_node("certificate_inspector", certificate_inspector)
    builder.add_node("fresh_publisher", fresh_publisher)
    builder.add_node("cutover_finalizer", cutover_finalizer)
    builder.add_node("window_idle", window_idle)
    builder.add_node("summary_reporter", summary_reporter)

    # ── Edges ─────────────────────────────────────────────────────────────
    builder.add_edge(START, "domain_enumerator")
    builder.add_conditional_edges(
        "domain_enumerator",
        enumeration_router,
        {
            "domains_found": "pick_next_domain",
            "no_domains": "summary_reporter",
        },
    )

    builder.add_edge("pick_next_domain", "certificate_inspector")
    builder.add_conditional_edges("certificate_inspector", phase_router, PHASE_ROUTES)

    for action in ("fresh_publisher", "cutover_finalizer", "window_idle"):
        builder.add_conditional_edges(action, domain_loop_router, LOOP_ROUTES)

    builder.add_edge("summary_reporter", END)

    # ── Compile ───────────────────────────────────────────────────────────
    checkpointer = MemorySaver() if use_checkpointing else None
    return builder.compile(checkpointer=checkpointer)


def initial_state(
    managed_domains: list[str] | None = None,
    cert_live_path: str = "/etc/letsencrypt/live",
    serving_path: str = "/etc/ssl/serving",
    zone_file_pattern: str = "/etc/bind/zones/db.{domain}",
    tlsa_ports: list[int] | None = None,
    lock_dir: str = "/run/dane-rollover",
) -> dict:
    """
    Build the initial RolloverState dict for a fresh run.
    Callers can override any field by merging the returned dict.
    """
    return {
        "managed_domains": list(managed_domains or []),
        "cert_live_path": cert_live_path,
        "serving_path": serving_path,
        "zone_file_pattern": zone_file_pattern,
        "tlsa_ports": list(tlsa_ports or [443]),
        "lock_dir": lock_dir,
        "pending_domains": [],
        "current_domain": None,
        "current_bundle": None,
        "current_phase": None,
        "actions": {},
        "failed_domains": [],
        "error_log": [],
    }
