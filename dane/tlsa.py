"""
Certificate inspection for TLSA publishing.

Provides:
  public_key_digest(cert_path) -> str
      SHA-256 of the DER SubjectPublicKeyInfo, hex encoded.
      This is the "1 1 1" association data: it survives re-issuance as long
      as the key pair is reused and changes whenever the key changes.

  inspect(domain, live_root) -> CertificateBundle
      Locates the domain's live certificate directory, resolves the
      cert.pem symlink and computes age + digest.

Live directory conventions, tried in order:
  <live_root>/www.<domain>/cert.pem
  <live_root>/<domain>/cert.pem
"""
from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from dane.errors import InvalidCertificate, MissingCertificate


@dataclass(frozen=True)
class CertificateBundle:
    domain: str
    live_dir: Path          # matched live directory (holds the four PEM links)
    cert_path: Path         # cert.pem resolved through symlinks
    mtime: float
    age: int                # whole seconds since mtime
    digest: str             # SHA-256 hex of the SubjectPublicKeyInfo


def live_dir_candidates(domain: str, live_root: str | Path) -> list[Path]:
    """Return the live directories to try for *domain*, in priority order."""
    root = Path(live_root)
    return [root / f"www.{domain}", root / domain]


def locate_certificate(domain: str, live_root: str | Path) -> tuple[Path, Path]:
    """Return (live_dir, resolved cert path) for the first readable convention."""
    for live_dir in live_dir_candidates(domain, live_root):
        cert = live_dir / "cert.pem"
        try:
            resolved = cert.resolve(strict=True)
        except (FileNotFoundError, RuntimeError, OSError):
            continue
        if resolved.is_file():
            return live_dir, resolved
    raise MissingCertificate(
        f"no certificate under {Path(live_root)} for {domain} or www.{domain}", domain
    )


def public_key_digest(cert_path: str | Path) -> str:
    """Return the hex SHA-256 digest of the certificate's public key (SPKI, DER)."""
    path = Path(cert_path)
    try:
        cert = x509.load_pem_x509_certificate(path.read_bytes())
    except (OSError, ValueError) as exc:
        raise InvalidCertificate(f"cannot load certificate {path}: {exc}") from exc

    spki = cert.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(spki).hexdigest()


def certificate_age(cert_path: Path, now: Optional[float] = None) -> int:
    """Whole seconds between the file's mtime and *now*."""
    now = time.time() if now is None else now
    return int(now - cert_path.stat().st_mtime)


def inspect(domain: str, live_root: str | Path, now: Optional[float] = None) -> CertificateBundle:
    """
    Build the CertificateBundle for *domain*.

    Raises MissingCertificate when no convention yields a certificate and
    InvalidCertificate when the PEM cannot be parsed.
    """
    live_dir, cert_path = locate_certificate(domain, live_root)
    try:
        digest = public_key_digest(cert_path)
    except InvalidCertificate as exc:
        exc.domain = domain
        raise
    mtime = cert_path.stat().st_mtime
    return CertificateBundle(
        domain=domain,
        live_dir=live_dir,
        cert_path=cert_path,
        mtime=mtime,
        age=certificate_age(cert_path, now),
        digest=digest,
    )
