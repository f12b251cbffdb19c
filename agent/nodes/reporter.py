"""
summary_reporter node: one structured summary line per run.
"""
from __future__ import annotations

import structlog

from agent.state import RolloverState

log = structlog.get_logger(__name__)


def summarize(state: RolloverState) -> dict[str, list[str]]:
    """Group processed domains by the action taken."""
    groups: dict[str, list[str]] = {}
    for domain, action in (state.get("actions") or {}).items():
        groups.setdefault(action, []).append(domain)
    return groups


def summary_reporter(state: RolloverState) -> dict:
    groups = summarize(state)
    failed = state.get("failed_domains", [])
    errors = state.get("error_log", [])

    log.info(
        "rollover_run_complete",
        **{action: sorted(domains) for action, domains in sorted(groups.items())},
        failed=failed or "none",
        errors=len(errors),
    )
    return {}
