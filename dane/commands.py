"""
External collaborators, one narrow function each.

  list_domains()        certificate tool listing → managed root domains
  sign_zone(domain)     DNSSEC re-sign of one zone
  reload_dns()          reload the authoritative DNS server
  reload_web()          reload the web server

Commands come from settings at call time (shlex-split, run without a shell,
"{domain}" expanded).  A non-zero exit, a timeout or a missing executable
raises ExternalToolFailure; callers decide whether that is fatal.
"""
from __future__ import annotations

import logging
import re
import shlex
import subprocess

from dane.errors import ExternalToolFailure

logger = logging.getLogger(__name__)

_CERT_NAME_RE = re.compile(r"^\s*Certificate Name:\s*(\S+)", re.MULTILINE)
_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?:\.(?!-)[a-z0-9-]{1,63})+$")


def build_command(template: str, domain: str = "") -> list[str]:
    """Split *template* and substitute {domain} in every argument."""
    return [arg.replace("{domain}", domain) for arg in shlex.split(template)]


def run(cmd: list[str], domain: str = "", timeout: int | None = None) -> str:
    """Run *cmd*; return combined output or raise ExternalToolFailure."""
    logger.debug("Running: %s", " ".join(shlex.quote(c) for c in cmd))
    try:
        cp = subprocess.run(
            cmd,
            check=False,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ExternalToolFailure(cmd, 127, str(exc), domain) from exc
    except subprocess.TimeoutExpired as exc:
        output = exc.output if isinstance(exc.output, str) else ""
        raise ExternalToolFailure(cmd, -1, output + f"\ntimed out after {timeout}s", domain) from exc

    if cp.returncode != 0:
        raise ExternalToolFailure(cmd, cp.returncode, cp.stdout or "", domain)
    return cp.stdout or ""


# ─── Domain enumeration ───────────────────────────────────────────────────────


def parse_domain_listing(output: str) -> list[str]:
    """
    Extract managed root domains from the certificate tool's listing.

    Accepts `certbot certificates` output (Certificate Name: blocks) or a
    plain one-name-per-line listing.  www aliases are dropped since they
    share the root domain's certificate and zone.
    """
    names = _CERT_NAME_RE.findall(output)
    if not names:
        names = output.splitlines()
    return root_domains(names)


def root_domains(names: list[str]) -> list[str]:
    """Normalize, drop invalid names and www aliases, de-duplicate in order."""
    domains: list[str] = []
    for name in names:
        name = name.strip().rstrip(".").lower()
        if not _DOMAIN_RE.match(name) or name.startswith("www."):
            continue
        if name not in domains:
            domains.append(name)
    return domains


def list_domains() -> list[str]:
    from config import settings  # late import, mirrors the other collaborators

    output = run(build_command(settings.DOMAIN_LIST_COMMAND), timeout=settings.COMMAND_TIMEOUT)
    return parse_domain_listing(output)


# ─── Triggers ─────────────────────────────────────────────────────────────────


def sign_zone(domain: str) -> None:
    from config import settings

    run(build_command(settings.SIGN_COMMAND, domain), domain, timeout=settings.COMMAND_TIMEOUT)
    logger.info("%s [sign] zone re-signed", domain)


def reload_dns() -> None:
    from config import settings

    run(build_command(settings.DNS_RELOAD_COMMAND), timeout=settings.COMMAND_TIMEOUT)


def reload_web() -> None:
    from config import settings

    run(build_command(settings.WEB_RELOAD_COMMAND), timeout=settings.COMMAND_TIMEOUT)
