"""
Graph state for one rollover run.

A run walks the managed domains one at a time; per-domain fields
(current_domain, current_bundle, current_phase) are reset by
pick_next_domain.  Nothing here survives the run: the zone files are the
only persistent state.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from typing_extensions import TypedDict


class BundleRecord(TypedDict):
    domain: str
    live_dir: str                     # live directory that matched (www.<domain> or <domain>)
    cert_path: str                    # cert.pem resolved through symlinks
    age: int                          # seconds since the resolved file's mtime
    digest: str                       # SHA-256 hex of the SubjectPublicKeyInfo


class RolloverState(TypedDict):
    # ── Configuration ──────────────────────────────────────────────────────
    managed_domains: List[str]        # explicit list; empty → certificate tool listing
    cert_live_path: str
    serving_path: str
    zone_file_pattern: str            # contains "{domain}"
    tlsa_ports: List[int]
    lock_dir: str

    # ── Domain loop ────────────────────────────────────────────────────────
    pending_domains: List[str]
    current_domain: Optional[str]
    current_bundle: Optional[BundleRecord]
    current_phase: Optional[str]      # Phase value; None when inspection failed

    # ── Progress tracking ──────────────────────────────────────────────────
    actions: Dict[str, str]           # domain → action taken (published, cutover, wait, ...)
    failed_domains: List[str]
    error_log: List[str]
