"""
Zone Record Store: structured view of a BIND zone file's TLSA records.

The zone is parsed into an ordered list of entries: TLSA lines become
TlsaRecord objects, the serial line is tracked by position, every other line
is kept verbatim.  Rendering an unmodified Zone reproduces the input byte for
byte; untouched records (usage 3 in particular) keep their original text.

Record grammar (read/write):
  _<port>._tcp[.www].<domain>. [ttl] IN TLSA <usage> <selector> <mtype> <hex> [; RETIRING]

Only "1 1 1" records (domain-issued cert, SPKI, SHA-256) are managed.  A
managed record carrying the RETIRING marker is the sole persisted memory of
an in-progress rollover.

ZoneStore wraps a zone file path with a transaction() context manager:
  load → mutate the model → (if records changed) bump serial → atomic write.
An exception inside the block leaves the file untouched.
"""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from dane.errors import MalformedZone
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)

RETIRING_MARKER = "RETIRING"
MANAGED_USAGE = 1
MANAGED_SELECTOR = 1
MANAGED_MATCHING_TYPE = 1

_TLSA_RE = re.compile(
    r"^(?P<owner>_\d+\._tcp(?:\.\S+)?)"
    r"\s+(?:(?P<ttl>\d+)\s+)?IN\s+TLSA"
    r"\s+(?P<usage>\d+)\s+(?P<selector>\d+)\s+(?P<mtype>\d+)"
    r"\s+(?P<data>[0-9A-Fa-f]+)"
    r"\s*(?:;(?P<comment>.*))?$",
    re.IGNORECASE,
)

# "   2024010100 ; serial" inside a multi-line SOA
_SERIAL_COMMENT_RE = re.compile(r"^(?P<pre>\s*)(?P<serial>\d+)(?P<post>\s*;.*serial.*)$", re.IGNORECASE)
# "@ IN SOA ns1.example.com. hostmaster.example.com. ( 2024010100 7200 ..."
_SERIAL_SOA_RE = re.compile(r"^(?P<pre>.*\bSOA\s+\S+\s+\S+\s+\(?\s*)(?P<serial>\d+)(?P<post>.*)$", re.IGNORECASE)
# bare serial on the first significant line after an SOA line that carries none
_SERIAL_BARE_RE = re.compile(r"^(?P<pre>\s*\(?\s*)(?P<serial>\d+)(?P<post>(?:[\s;)].*)?)$")
_SOA_RE = re.compile(r"\bSOA\b", re.IGNORECASE)


def next_serial(current: int, today: Optional[date] = None) -> int:
    """
    Return the serial that must replace *current*.

    YYYYMMDD00 for today if that is larger, else current + 1, so repeated
    bumps on the same day stay strictly increasing.
    """
    today = today or date.today()
    date_serial = int(today.strftime("%Y%m%d")) * 100
    if date_serial > current:
        return date_serial
    return current + 1


def endpoint_owners(domain: str, ports: Iterable[int]) -> list[str]:
    """Owner names managed for *domain*: root and www alias per port."""
    owners = []
    for port in ports:
        owners.append(f"_{port}._tcp.{domain}.".lower())
        owners.append(f"_{port}._tcp.www.{domain}.".lower())
    return owners


def _split_eol(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


@dataclass
class TlsaRecord:
    owner: str                       # fully qualified, lower case, trailing dot
    usage: int
    selector: int
    matching_type: int
    data: str                        # lower-case hex
    retiring: bool = False
    ttl: Optional[int] = None
    raw: Optional[str] = None        # original text; None for records we wrote
    eol: str = "\n"

    @property
    def managed(self) -> bool:
        return (self.usage, self.selector, self.matching_type) == (
            MANAGED_USAGE, MANAGED_SELECTOR, MANAGED_MATCHING_TYPE,
        )

    def text(self) -> str:
        if self.raw is not None:
            return self.raw
        ttl = f" {self.ttl}" if self.ttl is not None else ""
        line = (
            f"{self.owner}{ttl} IN TLSA {self.usage} {self.selector} "
            f"{self.matching_type} {self.data}"
        )
        if self.retiring:
            line += f" ; {RETIRING_MARKER}"
        return line

    def as_retiring(self) -> "TlsaRecord":
        """Same association, tagged with the in-band RETIRING comment."""
        return replace(self, retiring=True, raw=f"{self.text()} ; {RETIRING_MARKER}")

    @classmethod
    def parse(cls, line: str, origin: Optional[str] = None) -> Optional["TlsaRecord"]:
        body, eol = _split_eol(line)
        m = _TLSA_RE.match(body)
        if not m:
            return None
        owner = m.group("owner").lower()
        if not owner.endswith("."):
            if not origin:
                return None
            owner = f"{owner}.{origin.rstrip('.').lower()}."
        comment = m.group("comment") or ""
        return cls(
            owner=owner,
            usage=int(m.group("usage")),
            selector=int(m.group("selector")),
            matching_type=int(m.group("mtype")),
            data=m.group("data").lower(),
            retiring=RETIRING_MARKER in comment.upper().split(),
            ttl=int(m.group("ttl")) if m.group("ttl") else None,
            raw=body,
            eol=eol,
        )


Entry = Union[str, TlsaRecord]


@dataclass
class _SerialSlot:
    index: int
    pre: str
    post: str
    eol: str


@dataclass
class Zone:
    entries: list[Entry]
    serial: int
    slot: _SerialSlot
    changed: bool = field(default=False)

    # ── Parse / render ────────────────────────────────────────────────────

    @classmethod
    def parse(cls, text: str, origin: Optional[str] = None) -> "Zone":
        entries: list[Entry] = []
        slot: Optional[_SerialSlot] = None
        serial = 0
        soa_pending = False
        for line in text.splitlines(keepends=True):
            record = TlsaRecord.parse(line, origin)
            if record is not None:
                entries.append(record)
                continue
            if slot is None:
                body, eol = _split_eol(line)
                code = body.split(";", 1)[0].strip()
                m = _SERIAL_COMMENT_RE.match(body) or _SERIAL_SOA_RE.match(body)
                if m is None and soa_pending and code and code != "(":
                    m = _SERIAL_BARE_RE.match(body)
                    soa_pending = False
                if m:
                    slot = _SerialSlot(len(entries), m.group("pre"), m.group("post"), eol)
                    serial = int(m.group("serial"))
                elif _SOA_RE.search(code):
                    soa_pending = True
            entries.append(line)
        if slot is None:
            raise MalformedZone("no SOA serial found in zone")
        return cls(entries=entries, serial=serial, slot=slot)

    def render(self) -> str:
        out = []
        for i, entry in enumerate(self.entries):
            if i == self.slot.index:
                out.append(f"{self.slot.pre}{self.serial}{self.slot.post}{self.slot.eol}")
            elif isinstance(entry, TlsaRecord):
                out.append(entry.text() + entry.eol)
            else:
                out.append(entry)
        return "".join(out)

    # ── Queries ───────────────────────────────────────────────────────────

    def records(self, owner: Optional[str] = None) -> list[TlsaRecord]:
        owner = owner.lower() if owner else None
        return [
            e for e in self.entries
            if isinstance(e, TlsaRecord) and (owner is None or e.owner == owner)
        ]

    def managed(self, owner: Optional[str] = None) -> list[TlsaRecord]:
        return [r for r in self.records(owner) if r.managed]

    def active_digests(self, owner: str) -> set[str]:
        return {r.data for r in self.managed(owner) if not r.retiring}

    def dane_endpoints(self, owners: Iterable[str]) -> list[str]:
        """The subset of *owners* that publish at least one managed record."""
        return [o for o in owners if self.managed(o)]

    def pinned_endpoints(self, owners: Iterable[str]) -> list[str]:
        """The subset of *owners* with any usage-1 record, whatever its selector or matching type."""
        return [o for o in owners if any(r.usage == MANAGED_USAGE for r in self.records(o))]

    def has_retiring(self) -> bool:
        return any(r.retiring for r in self.managed())

    def retiring_at(self, owners: Iterable[str]) -> bool:
        return any(r.retiring for o in owners for r in self.managed(o))

    # ── Mutations ─────────────────────────────────────────────────────────

    def retire(self, owner: str) -> bool:
        """
        Tag the active managed record(s) at *owner* as retiring.

        A record already retiring at *owner* is dropped first so the owner
        never holds more than one retiring record.
        """
        active = [r for r in self.managed(owner) if not r.retiring]
        if not active:
            return False
        stale = [r for r in self.managed(owner) if r.retiring]
        for record in stale:
            self._remove(record)
        for record in active:
            idx = self._index(record)
            self.entries[idx] = record.as_retiring()
        self.changed = True
        return True

    def upsert(self, owner: str, digest: str) -> bool:
        """
        Make *digest* the active managed association at *owner*.

        No-op when it already is.  Otherwise the current active record is
        retired and the new record is inserted right after the owner's last
        record.
        """
        owner = owner.lower()
        digest = digest.lower()
        if digest in self.active_digests(owner):
            return False
        self.retire(owner)
        new = TlsaRecord(
            owner=owner,
            usage=MANAGED_USAGE,
            selector=MANAGED_SELECTOR,
            matching_type=MANAGED_MATCHING_TYPE,
            data=digest,
        )
        self._insert_after(self._anchor(owner), new)
        self.changed = True
        return True

    def delete_retiring(self) -> int:
        """Remove every managed record tagged retiring; return how many."""
        doomed = [r for r in self.managed() if r.retiring]
        for record in doomed:
            self._remove(record)
        if doomed:
            self.changed = True
        return len(doomed)

    def bump_serial(self, today: Optional[date] = None) -> int:
        self.serial = next_serial(self.serial, today)
        return self.serial

    # ── Internal ──────────────────────────────────────────────────────────

    def _index(self, record: TlsaRecord) -> int:
        for i, entry in enumerate(self.entries):
            if entry is record:
                return i
        raise ValueError(f"record not in zone: {record.text()}")

    def _remove(self, record: TlsaRecord) -> None:
        idx = self._index(record)
        del self.entries[idx]
        if idx < self.slot.index:
            self.slot.index -= 1

    def _anchor(self, owner: str) -> Optional[int]:
        """Index to insert after: owner's last record, else last TLSA line, else end."""
        same = [i for i, e in enumerate(self.entries) if isinstance(e, TlsaRecord) and e.owner == owner]
        if same:
            return same[-1]
        any_tlsa = [i for i, e in enumerate(self.entries) if isinstance(e, TlsaRecord)]
        if any_tlsa:
            return any_tlsa[-1]
        return len(self.entries) - 1 if self.entries else None

    def _insert_after(self, anchor: Optional[int], record: TlsaRecord) -> None:
        pos = 0 if anchor is None else anchor + 1
        if anchor is not None:
            prev = self.entries[anchor]
            # keep the file's trailing-newline state when appending past the last line
            if isinstance(prev, TlsaRecord) and prev.eol == "":
                prev.eol, record.eol = "\n", ""
            elif isinstance(prev, str) and not prev.endswith("\n"):
                if anchor == self.slot.index:
                    self.slot.eol, record.eol = "\n", ""
                else:
                    self.entries[anchor] = prev + "\n"
                    record.eol = ""
        self.entries.insert(pos, record)
        if pos <= self.slot.index:
            self.slot.index += 1


class ZoneStore:
    """Transactional access to one zone file on disk."""

    def __init__(self, path: Union[str, Path], origin: Optional[str] = None) -> None:
        self.path = Path(path)
        self.origin = origin

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Zone:
        try:
            with open(self.path, encoding="utf-8", newline="") as fh:
                text = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise MalformedZone(f"cannot read zone {self.path}: {exc}", self.origin or "") from exc
        try:
            return Zone.parse(text, self.origin)
        except MalformedZone as exc:
            raise MalformedZone(f"{self.path}: {exc}", self.origin or "") from exc

    def save(self, zone: Zone) -> None:
        atomic_write_text(self.path, zone.render())

    @contextmanager
    def transaction(self, today: Optional[date] = None) -> Iterator[Zone]:
        """Yield the parsed zone; persist with a bumped serial if records changed."""
        zone = self.load()
        before = zone.serial
        yield zone
        if zone.changed:
            zone.bump_serial(today)
            self.save(zone)
            logger.debug("Wrote %s (serial %d → %d)", self.path, before, zone.serial)

    # ── Single-operation transactions ─────────────────────────────────────

    def upsert_association(self, owner: str, digest: str, today: Optional[date] = None) -> bool:
        with self.transaction(today) as zone:
            return zone.upsert(owner, digest)

    def retire_association(self, owner: str, today: Optional[date] = None) -> bool:
        with self.transaction(today) as zone:
            return zone.retire(owner)

    def delete_retiring(self, today: Optional[date] = None) -> int:
        with self.transaction(today) as zone:
            return zone.delete_retiring()

    def bump_serial(self, today: Optional[date] = None) -> int:
        zone = self.load()
        serial = zone.bump_serial(today)
        self.save(zone)
        return serial
