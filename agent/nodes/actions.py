"""
Phase action nodes.

  fresh_publisher      FRESH: publish the new digest beside the old one
                       (or, for domains without DANE or with a reused key,
                       serve the new cert now)
  cutover_finalizer    CUTOVER: drop RETIRING records, serve the new cert
  window_idle          WAIT / STALE: log only

Zone and serving mutations for a domain run under its domain lock.  Signing
and reloads fire only after the mutation they publish is on disk; a failed
trigger is logged and recorded, never rolled back.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from agent.state import RolloverState
from dane import commands, rollover
from dane.errors import ExternalToolFailure, RolloverError
from dane.rollover import Publication
from dane.zone import ZoneStore
from storage import serving
from storage.locking import domain_lock

logger = logging.getLogger(__name__)


def fresh_publisher(state: RolloverState) -> dict:
    domain = state["current_domain"]
    bundle = state["current_bundle"]
    store = _zone_store(state, domain)
    errors: list[str] = []

    try:
        with domain_lock(Path(state["lock_dir"]), domain):
            outcome = rollover.publish(store, domain, bundle["digest"], state["tlsa_ports"])

            if outcome is Publication.NO_DANE:
                changed = serving.repoint(state["serving_path"], domain, Path(bundle["live_dir"]))
                if not changed:
                    logger.info("%s [fresh] no TLSA in use, serving references already current", domain)
                    return _record(state, domain, "noop")
                logger.info("%s [serve] no TLSA in use, serving %s", domain, bundle["cert_path"])
                _fire(errors, domain, "reload", commands.reload_web)
                return _record(state, domain, "served", errors)

            if outcome is Publication.UNMANAGED:
                logger.warning(
                    "%s [skip] usage-1 TLSA records present but none is 1 1 1; zone and serving left alone",
                    domain,
                )
                return _record(state, domain, "skipped")

            if outcome is Publication.AWAITING_CUTOVER:
                logger.info(
                    "%s [fresh] key %s… already published, previous association still retiring",
                    domain,
                    bundle["digest"][:16],
                )
                return _record(state, domain, "unchanged")

            if outcome is Publication.UNCHANGED:
                # reused key: the published association already covers the renewed cert
                changed = serving.repoint(state["serving_path"], domain, Path(bundle["live_dir"]))
                if not changed:
                    logger.info("%s [fresh] key %s… already published", domain, bundle["digest"][:16])
                    return _record(state, domain, "unchanged")
                logger.info("%s [serve] key %s… unchanged, serving %s", domain, bundle["digest"][:16], bundle["cert_path"])
                _fire(errors, domain, "reload", commands.reload_web)
                return _record(state, domain, "served", errors)

            logger.info(
                "%s [fresh] published key %s…, previous association retiring",
                domain,
                bundle["digest"][:16],
            )
            _fire(errors, domain, "sign", commands.sign_zone, domain)
            _fire(errors, domain, "reload", commands.reload_dns)
    except (RolloverError, OSError) as exc:
        return _failed(state, domain, "fresh", exc)

    return _record(state, domain, "published", errors)


def cutover_finalizer(state: RolloverState) -> dict:
    domain = state["current_domain"]
    bundle = state["current_bundle"]
    store = _zone_store(state, domain)
    errors: list[str] = []

    try:
        with domain_lock(Path(state["lock_dir"]), domain):
            # Serving material must be complete before the RETIRING records go;
            # once they are gone this action is never retried.
            serving.resolve_sources(Path(bundle["live_dir"]), domain)

            removed = rollover.finalize(store)
            if not removed:
                logger.info("%s [cutover] no retiring association, nothing to do", domain)
                return _record(state, domain, "noop")

            logger.info("%s [cutover] removed %d retiring association(s)", domain, removed)
            serving.repoint(state["serving_path"], domain, Path(bundle["live_dir"]))
            logger.info("%s [serve] serving %s", domain, bundle["cert_path"])
            _fire(errors, domain, "reload", commands.reload_web)
            _fire(errors, domain, "sign", commands.sign_zone, domain)
            _fire(errors, domain, "reload", commands.reload_dns)
    except (RolloverError, OSError) as exc:
        return _failed(state, domain, "cutover", exc)

    return _record(state, domain, "cutover", errors)


def window_idle(state: RolloverState) -> dict:
    domain = state["current_domain"]
    phase = state["current_phase"]
    age = state["current_bundle"]["age"]
    if phase == rollover.Phase.WAIT.value:
        logger.info("%s [wait] certificate age %ds, waiting for DNS propagation", domain, age)
    else:
        logger.info("%s [stale] certificate age %ds, outside the rollover window", domain, age)
    return _record(state, domain, phase)


# ─── Internal ──────────────────────────────────────────────────────────────────


def _zone_store(state: RolloverState, domain: str) -> ZoneStore:
    return ZoneStore(state["zone_file_pattern"].replace("{domain}", domain), origin=domain)


def _fire(errors: list[str], domain: str, label: str, trigger: Callable[..., None], *args) -> None:
    """Run one trigger; a failure is logged and collected, not raised."""
    try:
        trigger(*args)
    except ExternalToolFailure as exc:
        logger.error("%s [%s] %s", domain, label, exc)
        errors.append(f"{domain}: {label} failed: {exc}")


def _record(state: RolloverState, domain: str, action: str, errors: Optional[list[str]] = None) -> dict:
    actions = dict(state.get("actions") or {})
    actions[domain] = action
    update: dict = {"actions": actions}
    if errors:
        update["error_log"] = state.get("error_log", []) + errors
    return update


def _failed(state: RolloverState, domain: str, label: str, exc: Exception) -> dict:
    logger.error("%s [%s] aborted: %s", domain, label, exc)
    return {
        "failed_domains": state.get("failed_domains", []) + [domain],
        "error_log": state.get("error_log", []) + [f"{domain}: {label} aborted: {exc}"],
    }
