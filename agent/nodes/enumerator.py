"""
domain_enumerator node: builds the list of root domains to process.
"""
from __future__ import annotations

import logging

from agent.state import RolloverState
from dane import commands
from dane.errors import ExternalToolFailure

logger = logging.getLogger(__name__)


def domain_enumerator(state: RolloverState) -> dict:
    """
    Use managed_domains when given, else the certificate tool's listing.
    www aliases are dropped either way.  Populates pending_domains.
    """
    explicit = state.get("managed_domains") or []
    if explicit:
        domains = commands.root_domains(explicit)
    else:
        try:
            domains = commands.list_domains()
        except ExternalToolFailure as exc:
            error = f"domain listing failed: {exc}"
            logger.error(error)
            return {
                "pending_domains": [],
                "error_log": state.get("error_log", []) + [error],
            }

    logger.info("Checking %d domain(s): %s", len(domains), ", ".join(domains) or "(none)")
    return {"pending_domains": domains}
