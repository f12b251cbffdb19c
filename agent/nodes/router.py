"""
Domain loop and phase dispatch.

pick_next_domain is a node; the *_router functions are routing functions for
graph.add_conditional_edges().
"""
from __future__ import annotations

import logging

from agent.state import RolloverState

logger = logging.getLogger(__name__)


def pick_next_domain(state: RolloverState) -> dict:
    """
    Node that pops the next domain from pending_domains and sets current_domain.
    Also resets the per-domain fields.
    """
    pending = list(state.get("pending_domains", []))
    if not pending:
        return {}

    next_domain = pending[0]
    logger.debug("Processing domain: %s", next_domain)
    return {
        "current_domain": next_domain,
        "pending_domains": pending[1:],
        "current_bundle": None,
        "current_phase": None,
    }


def enumeration_router(state: RolloverState) -> str:
    """
    After domain_enumerator.

    Returns: "domains_found" | "no_domains"
    """
    return "domains_found" if state.get("pending_domains") else "no_domains"


def domain_loop_router(state: RolloverState) -> str:
    """
    After a domain's action node.

    Returns:
      "next_domain"    more domains to process
      "all_done"       no more pending, go to reporter
    """
    if state.get("pending_domains"):
        return "next_domain"
    return "all_done"


def phase_router(state: RolloverState) -> str:
    """
    After certificate_inspector: dispatch on the rollover phase.

    Returns a Phase value ("fresh" | "wait" | "cutover" | "stale"), or the
    domain_loop_router result when inspection failed and the domain is skipped.
    """
    phase = state.get("current_phase")
    if phase is None:
        return domain_loop_router(state)
    return phase
