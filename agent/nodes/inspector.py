"""
certificate_inspector node: locates the domain's live certificate,
computes age + public-key digest and classifies the rollover phase.
"""
from __future__ import annotations

import logging

from agent.state import BundleRecord, RolloverState
from dane import tlsa
from dane.errors import RolloverError
from dane.rollover import classify_age

logger = logging.getLogger(__name__)


def certificate_inspector(state: RolloverState) -> dict:
    """
    Returns current_bundle + current_phase, or records the domain as failed
    (current_phase None) when no usable certificate exists.
    """
    domain = state["current_domain"]
    if not domain:
        return {"error_log": state.get("error_log", []) + ["certificate_inspector called with no current_domain"]}

    try:
        bundle = tlsa.inspect(domain, state["cert_live_path"])
    except RolloverError as exc:
        logger.warning("%s [skip] %s", domain, exc)
        return {
            "current_bundle": None,
            "current_phase": None,
            "failed_domains": state.get("failed_domains", []) + [domain],
            "error_log": state.get("error_log", []) + [f"{domain}: {exc}"],
        }

    phase = classify_age(bundle.age)
    logger.debug("%s [%s] %s age %ds, key %s", domain, phase.value, bundle.cert_path, bundle.age, bundle.digest)

    record: BundleRecord = {
        "domain": domain,
        "live_dir": str(bundle.live_dir),
        "cert_path": str(bundle.cert_path),
        "age": bundle.age,
        "digest": bundle.digest,
    }
    return {"current_bundle": record, "current_phase": phase.value}
