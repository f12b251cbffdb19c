"""
Error taxonomy for the TLSA rollover.

Every error is recovered at the per-domain boundary in the graph nodes:
the domain is logged and skipped, the run continues.
"""
from __future__ import annotations


class RolloverError(Exception):
    """Base class; carries the domain being processed when known."""

    def __init__(self, message: str, domain: str = "") -> None:
        self.domain = domain
        super().__init__(message)


class MissingCertificate(RolloverError):
    """No readable certificate under any known live-directory convention."""


class InvalidCertificate(RolloverError):
    """Certificate file exists but cannot be parsed."""


class MalformedZone(RolloverError):
    """Zone file unreadable or missing an expected field (e.g. the serial)."""


class ExternalToolFailure(RolloverError):
    """An external command (listing, signer, reload) exited non-zero."""

    def __init__(self, command: list[str], returncode: int, output: str = "", domain: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        detail = output.strip().splitlines()[-1] if output.strip() else "no output"
        super().__init__(f"{command[0] if command else '?'} exited {returncode}: {detail}", domain)
