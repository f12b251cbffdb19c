"""
Shared pytest fixtures.

LiveTree
--------
Builds a certbot-style layout under tmp_path:

  live/<name>/{cert,chain,fullchain,privkey}.pem  → ../../archive/<name>/<file>N.pem
  archive/<name>/<file>N.pem

issue() adds a new version and repoints the live links, exactly like a
renewal; set_age() backdates the current archive certificate's mtime.

Zone text
---------
zone_text() renders a small BIND zone with the given TLSA lines.
"""
from __future__ import annotations

import hashlib
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

OLD_DIGEST = "a" * 64
CA_DIGEST = "c" * 64


# ─── Certificates ─────────────────────────────────────────────────────────────


def make_certificate(common_name: str, key: ec.EllipticCurvePrivateKey | None = None):
    """Return a self-signed EC P-256 (certificate, key) pair."""
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(tz=timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=90))
        .sign(key, hashes.SHA256())
    )
    return cert, key


def spki_sha256(cert: x509.Certificate) -> str:
    spki = cert.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return hashlib.sha256(spki).hexdigest()


def cert_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def key_pem(key) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def backdate(path: Path, age: int) -> None:
    t = time.time() - age
    os.utime(path, (t, t))


class LiveTree:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.live = root / "live"
        self.archive = root / "archive"
        self._versions: dict[str, int] = {}

    def issue(self, name: str, age: int = 10, key=None) -> dict:
        """Issue a new certificate version for live/<name>; return its facts."""
        version = self._versions.get(name, 0) + 1
        self._versions[name] = version

        cert, key = make_certificate(name, key)
        chain, _ = make_certificate(f"Intermediate for {name}")

        archive_dir = self.archive / name
        archive_dir.mkdir(parents=True, exist_ok=True)
        files = {
            "cert": cert_pem(cert),
            "chain": cert_pem(chain),
            "fullchain": cert_pem(cert) + cert_pem(chain),
            "privkey": key_pem(key),
        }
        live_dir = self.live / name
        live_dir.mkdir(parents=True, exist_ok=True)
        for stem, content in files.items():
            target = archive_dir / f"{stem}{version}.pem"
            target.write_text(content)
            link = live_dir / f"{stem}.pem"
            tmp = live_dir / f".{stem}.tmp"
            os.symlink(os.path.relpath(target, live_dir), tmp)
            os.replace(tmp, link)

        backdate(archive_dir / f"cert{version}.pem", age)
        return {
            "cert": cert,
            "key": key,
            "digest": spki_sha256(cert),
            "live_dir": live_dir,
            "archive_cert": archive_dir / f"cert{version}.pem",
            "archive_dir": archive_dir,
            "version": version,
        }

    def set_age(self, name: str, age: int) -> None:
        backdate((self.live / name / "cert.pem").resolve(), age)


@pytest.fixture()
def live_tree(tmp_path: Path) -> LiveTree:
    return LiveTree(tmp_path / "letsencrypt")


# ─── Zones ────────────────────────────────────────────────────────────────────

ZONE_HEADER = """\
$TTL 3600
$ORIGIN {domain}.
@       IN SOA  ns1.{domain}. hostmaster.{domain}. (
                {serial} ; serial
                7200       ; refresh
                3600       ; retry
                1209600    ; expire
                3600 )     ; minimum
        IN NS   ns1.{domain}.
ns1     IN A    192.0.2.1
www     IN CNAME {domain}.
"""


def zone_text(domain: str = "example.com", serial: int = 2024010100, tlsa: list[str] | None = None) -> str:
    body = ZONE_HEADER.format(domain=domain, serial=serial)
    return body + "".join(line + "\n" for line in (tlsa or []))


def dane_zone(domain: str = "example.com", digest: str = OLD_DIGEST, serial: int = 2024010100) -> str:
    """Zone with one active 1 1 1 record per endpoint and a usage-3 record."""
    return zone_text(domain, serial, [
        f"_443._tcp.{domain}. IN TLSA 1 1 1 {digest}",
        f"_443._tcp.www.{domain}. IN TLSA 1 1 1 {digest}",
        f"_443._tcp.{domain}. IN TLSA 3 1 1 {CA_DIGEST}",
    ])


@pytest.fixture()
def zones_dir(tmp_path: Path) -> Path:
    d = tmp_path / "zones"
    d.mkdir()
    return d


# ─── Settings patch ───────────────────────────────────────────────────────────


@pytest.fixture()
def rollover_settings(tmp_path: Path, live_tree: LiveTree, zones_dir: Path):
    """
    Mutate the live settings singleton to point at tmp_path,
    restore original values after the test.
    """
    from config import settings

    fields = (
        "MANAGED_DOMAINS", "CERT_LIVE_PATH", "SERVING_PATH", "ZONE_FILE_PATTERN",
        "TLSA_PORTS", "LOCK_DIR", "RUN_LOCK_PATH", "SIGN_COMMAND",
        "DNS_RELOAD_COMMAND", "WEB_RELOAD_COMMAND",
    )
    originals = {k: getattr(settings, k) for k in fields}

    settings.MANAGED_DOMAINS = ["example.com"]
    settings.CERT_LIVE_PATH = str(live_tree.live)
    settings.SERVING_PATH = str(tmp_path / "serving")
    settings.ZONE_FILE_PATTERN = str(zones_dir / "db.{domain}")
    settings.TLSA_PORTS = [443]
    settings.LOCK_DIR = str(tmp_path / "locks")
    settings.RUN_LOCK_PATH = str(tmp_path / "run.lock")

    yield settings

    for k, v in originals.items():
        setattr(settings, k, v)
