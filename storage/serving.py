"""
Serving-material references for the web server.

Directory layout per domain:
  <serving_root>/<domain>/
      cert.pem        → resolved leaf certificate
      chain.pem       → resolved intermediate chain
      fullchain.pem   → resolved cert + chain
      privkey.pem     → resolved private key

Each reference is a symlink to the *resolved* archive file behind the
certificate tool's live directory, so a renewal (which repoints the live
links) does not change what is served until repoint() is called again.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dane.errors import MissingCertificate
from storage.atomic import atomic_symlink

logger = logging.getLogger(__name__)

SERVING_FILES = ("cert.pem", "chain.pem", "fullchain.pem", "privkey.pem")


def serving_dir(serving_root: str | Path, domain: str) -> Path:
    return Path(serving_root) / domain


def resolve_sources(live_dir: Path, domain: str = "") -> dict[str, Path]:
    """Map each serving file name to its fully resolved source in *live_dir*."""
    sources = {}
    for name in SERVING_FILES:
        try:
            sources[name] = (Path(live_dir) / name).resolve(strict=True)
        except (FileNotFoundError, RuntimeError, OSError) as exc:
            raise MissingCertificate(f"{Path(live_dir) / name} is missing: {exc}", domain) from exc
    return sources


def current_targets(serving_root: str | Path, domain: str) -> dict[str, Optional[Path]]:
    """Where each serving reference points now (None when absent)."""
    d = serving_dir(serving_root, domain)
    targets: dict[str, Optional[Path]] = {}
    for name in SERVING_FILES:
        link = d / name
        targets[name] = link.resolve() if link.exists() else None
    return targets


def repoint(serving_root: str | Path, domain: str, live_dir: Path) -> bool:
    """
    Point the four serving references of *domain* at the material in *live_dir*.

    All sources are resolved before any link is touched.  Returns True when at
    least one reference changed.
    """
    sources = resolve_sources(live_dir, domain)
    d = serving_dir(serving_root, domain)

    changed = False
    for name in SERVING_FILES:
        if atomic_symlink(d / name, sources[name]):
            logger.debug("%s → %s", d / name, sources[name])
            changed = True
    return changed
