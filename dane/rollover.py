"""
Rollover state machine.

The phase is a pure function of the live certificate's age; nothing is stored
between runs except the RETIRING tag in the zone itself.  Thresholds assume an
hourly run and a ~24h DNS propagation budget:

  FRESH    age < 3600            publish the new digest next to the old one
  WAIT     3600 <= age <= 86400  nothing (propagation delay)
  CUTOVER  86400 < age < 90000   drop RETIRING records, serve the new cert
  STALE    age >= 90000          nothing (window completed or missed)

The zone-side halves of FRESH and CUTOVER live here (publish / finalize);
locking, serving references and triggers are orchestrated by the graph nodes.
"""
from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Iterable, Optional

from dane.zone import ZoneStore, endpoint_owners

FRESH_LIMIT = 3600
PROPAGATION_DELAY = 86400
CUTOVER_LIMIT = 90000


class Phase(str, Enum):
    FRESH = "fresh"
    WAIT = "wait"
    CUTOVER = "cutover"
    STALE = "stale"


class Publication(str, Enum):
    NO_DANE = "no_dane"          # zone publishes no usage-1 records for the domain
    UNMANAGED = "unmanaged"      # usage-1 records pin the domain, but not as 1 1 1
    UNCHANGED = "unchanged"      # digest already active everywhere, nothing retiring
    AWAITING_CUTOVER = "awaiting_cutover"  # digest active, previous association still retiring
    PUBLISHED = "published"      # new digest inserted, old one tagged RETIRING


def classify_age(age: int) -> Phase:
    if age < FRESH_LIMIT:
        return Phase.FRESH
    if age <= PROPAGATION_DELAY:
        return Phase.WAIT
    if age < CUTOVER_LIMIT:
        return Phase.CUTOVER
    return Phase.STALE


def publish(
    store: ZoneStore,
    domain: str,
    digest: str,
    ports: Iterable[int],
    today: Optional[date] = None,
) -> Publication:
    """
    FRESH zone update: at every endpoint that already uses DANE, retire the
    active record and add *digest*, all in one transaction (one serial bump).

    An endpoint pinned by usage-1 records none of which is "1 1 1" cannot be
    rolled over here; the zone is then left alone and UNMANAGED returned.
    """
    if not store.exists():
        return Publication.NO_DANE

    digest = digest.lower()
    with store.transaction(today) as zone:
        owners = endpoint_owners(domain, ports)
        endpoints = zone.dane_endpoints(owners)
        pinned = zone.pinned_endpoints(owners)
        if any(owner not in endpoints for owner in pinned):
            return Publication.UNMANAGED
        if not endpoints:
            return Publication.NO_DANE
        pending = [owner for owner in endpoints if digest not in zone.active_digests(owner)]
        if not pending:
            if zone.retiring_at(endpoints):
                return Publication.AWAITING_CUTOVER
            return Publication.UNCHANGED
        for owner in pending:
            zone.upsert(owner, digest)
    return Publication.PUBLISHED


def finalize(store: ZoneStore, today: Optional[date] = None) -> int:
    """CUTOVER zone update: delete RETIRING records; return how many were removed."""
    if not store.exists():
        return 0
    with store.transaction(today) as zone:
        return zone.delete_retiring()
