"""
Unit tests for the zone record store (dane/zone.py).

The zone model must reproduce untouched text byte for byte, bump the serial
exactly once per persisted change, and never touch records it does not
manage (usage 3, other selectors / matching types).
"""
from __future__ import annotations

from datetime import date

import pytest

from conftest import CA_DIGEST, OLD_DIGEST, dane_zone, zone_text
from dane.errors import MalformedZone
from dane.zone import TlsaRecord, Zone, ZoneStore, endpoint_owners, next_serial

TODAY = date(2026, 10, 18)
NEW_DIGEST = "b" * 64
NEWER_DIGEST = "d" * 64
ROOT = "_443._tcp.example.com."
WWW = "_443._tcp.www.example.com."


def _lines(zone: Zone) -> list[str]:
    return zone.render().splitlines()


# ─── Serial arithmetic ────────────────────────────────────────────────────────


class TestNextSerial:
    def test_older_serial_jumps_to_today(self):
        assert next_serial(2024010100, TODAY) == 2026101800

    def test_same_day_serial_increments(self):
        assert next_serial(2026101800, TODAY) == 2026101801
        assert next_serial(2026101807, TODAY) == 2026101808

    def test_serial_ahead_of_today_still_increases(self):
        """A serial from the future (or a counter scheme) only ever goes up."""
        assert next_serial(2030010100, TODAY) == 2030010101
        assert next_serial(9999999999, TODAY) == 10000000000

    def test_repeated_bumps_strictly_increase(self):
        serial = 2024010100
        seen = []
        for _ in range(150):
            serial = next_serial(serial, TODAY)
            seen.append(serial)
        assert seen == sorted(set(seen))


class TestEndpointOwners:
    def test_root_and_www_per_port(self):
        assert endpoint_owners("Example.COM", [443, 25]) == [
            "_443._tcp.example.com.",
            "_443._tcp.www.example.com.",
            "_25._tcp.example.com.",
            "_25._tcp.www.example.com.",
        ]


# ─── Parsing ──────────────────────────────────────────────────────────────────


class TestParse:
    def test_render_of_unmodified_zone_is_identical(self):
        text = dane_zone()
        assert Zone.parse(text, "example.com").render() == text

    def test_render_preserves_crlf_and_missing_final_newline(self):
        text = dane_zone().replace("\n", "\r\n").rstrip("\r\n")
        assert Zone.parse(text, "example.com").render() == text

    def test_serial_from_multiline_soa_comment(self):
        zone = Zone.parse(dane_zone(serial=2024050307), "example.com")
        assert zone.serial == 2024050307

    def test_serial_from_single_line_soa(self):
        text = (
            "$ORIGIN example.com.\n"
            "@ 3600 IN SOA ns1.example.com. hostmaster.example.com. ( 2023120401 7200 3600 1209600 3600 )\n"
            f"_443._tcp IN TLSA 1 1 1 {OLD_DIGEST}\n"
        )
        zone = Zone.parse(text, "example.com")
        assert zone.serial == 2023120401

    def test_bare_serial_after_soa_paren(self):
        text = (
            "$ORIGIN example.com.\n"
            "@ IN SOA ns1 host. (\n"
            "   2024010100\n"
            "   7200 3600 1209600 3600 )\n"
            f"_443._tcp IN TLSA 1 1 1 {OLD_DIGEST}\n"
        )
        zone = Zone.parse(text, "example.com")

        assert zone.serial == 2024010100
        assert zone.render() == text

        zone.bump_serial(TODAY)
        assert "   2026101800\n   7200 3600 1209600 3600 )\n" in zone.render()

    def test_bare_serial_with_paren_and_comments_on_own_lines(self):
        text = (
            "@ IN SOA ns1.example.com. hostmaster.example.com.\n"
            "    ; timers follow\n"
            "    (\n"
            "    2024010105 7200 3600\n"
            "    1209600 3600 )\n"
        )
        zone = Zone.parse(text, "example.com")
        zone.bump_serial(TODAY)

        assert zone.render() == text.replace("2024010105", "2026101800")

    def test_timer_line_is_not_taken_for_a_serial(self):
        """Only the first significant line after the SOA may hold the serial."""
        text = (
            "@ IN SOA ns1 host. (\n"
            "   ns-serial-missing\n"
            "   7200 3600 1209600 3600 )\n"
        )
        with pytest.raises(MalformedZone):
            Zone.parse(text, "example.com")

    def test_missing_serial_raises(self):
        with pytest.raises(MalformedZone, match="serial"):
            Zone.parse(f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST}\n", "example.com")

    def test_records_are_classified(self):
        zone = Zone.parse(dane_zone(), "example.com")
        assert len(zone.records()) == 3
        assert [r.data for r in zone.managed(ROOT)] == [OLD_DIGEST]
        assert zone.active_digests(WWW) == {OLD_DIGEST}
        usage3 = [r for r in zone.records(ROOT) if not r.managed]
        assert usage3[0].usage == 3 and usage3[0].data == CA_DIGEST

    def test_relative_owner_is_qualified_with_origin(self):
        rec = TlsaRecord.parse(f"_443._tcp.www 300 IN TLSA 1 1 1 {OLD_DIGEST}\n", "example.com")
        assert rec.owner == WWW
        assert rec.ttl == 300

    def test_retiring_marker_and_uppercase_hex(self):
        rec = TlsaRecord.parse(f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST.upper()} ; RETIRING")
        assert rec.retiring is True
        assert rec.data == OLD_DIGEST
        assert rec.text() == f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST.upper()} ; RETIRING"

    def test_non_tlsa_lines_are_not_records(self):
        assert TlsaRecord.parse("www IN CNAME example.com.\n", "example.com") is None
        assert TlsaRecord.parse("; _443._tcp IN TLSA 1 1 1 abcd\n", "example.com") is None

    def test_dane_endpoints(self):
        zone = Zone.parse(zone_text(tlsa=[f"{WWW} IN TLSA 1 1 1 {OLD_DIGEST}"]), "example.com")
        assert zone.dane_endpoints(endpoint_owners("example.com", [443])) == [WWW]

    def test_pinned_endpoints_count_any_usage1_record(self):
        zone = Zone.parse(zone_text(tlsa=[
            f"{ROOT} IN TLSA 1 0 1 {OLD_DIGEST}",
            f"{WWW} IN TLSA 3 1 1 {CA_DIGEST}",
        ]), "example.com")

        assert zone.pinned_endpoints([ROOT, WWW]) == [ROOT]
        assert zone.dane_endpoints([ROOT, WWW]) == []

    def test_usage3_only_endpoint_is_not_dane_managed(self):
        zone = Zone.parse(zone_text(tlsa=[f"{ROOT} IN TLSA 3 1 1 {CA_DIGEST}"]), "example.com")
        assert zone.dane_endpoints([ROOT]) == []


# ─── Mutations ────────────────────────────────────────────────────────────────


class TestMutations:
    def test_upsert_retires_old_and_adds_new(self):
        zone = Zone.parse(dane_zone(), "example.com")

        assert zone.upsert(ROOT, NEW_DIGEST) is True

        lines = _lines(zone)
        assert f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST} ; RETIRING" in lines
        assert f"{ROOT} IN TLSA 1 1 1 {NEW_DIGEST}" in lines
        assert zone.active_digests(ROOT) == {NEW_DIGEST}
        assert zone.changed is True

    def test_upsert_inserts_after_owner_last_record(self):
        zone = Zone.parse(dane_zone(), "example.com")
        zone.upsert(WWW, NEW_DIGEST)

        lines = _lines(zone)
        i = lines.index(f"{WWW} IN TLSA 1 1 1 {OLD_DIGEST} ; RETIRING")
        assert lines[i + 1] == f"{WWW} IN TLSA 1 1 1 {NEW_DIGEST}"

    def test_upsert_same_digest_is_noop(self):
        text = dane_zone()
        zone = Zone.parse(text, "example.com")

        assert zone.upsert(ROOT, OLD_DIGEST.upper()) is False
        assert zone.changed is False
        assert zone.render() == text

    def test_usage3_record_is_never_touched(self):
        zone = Zone.parse(dane_zone(), "example.com")
        zone.upsert(ROOT, NEW_DIGEST)
        zone.delete_retiring()

        assert f"{ROOT} IN TLSA 3 1 1 {CA_DIGEST}" in _lines(zone)

    def test_second_rollover_keeps_single_retiring_record(self):
        """A newer key published inside the window replaces the older retiring one."""
        zone = Zone.parse(dane_zone(), "example.com")
        zone.upsert(ROOT, NEW_DIGEST)
        zone.upsert(ROOT, NEWER_DIGEST)

        retiring = [r.data for r in zone.managed(ROOT) if r.retiring]
        assert retiring == [NEW_DIGEST]
        assert zone.active_digests(ROOT) == {NEWER_DIGEST}

    def test_delete_retiring(self):
        zone = Zone.parse(dane_zone(), "example.com")
        zone.upsert(ROOT, NEW_DIGEST)
        zone.upsert(WWW, NEW_DIGEST)

        assert zone.delete_retiring() == 2
        assert not zone.has_retiring()
        assert zone.active_digests(ROOT) == {NEW_DIGEST}
        assert zone.active_digests(WWW) == {NEW_DIGEST}

    def test_delete_retiring_without_any_is_noop(self):
        zone = Zone.parse(dane_zone(), "example.com")
        assert zone.delete_retiring() == 0
        assert zone.changed is False

    def test_serial_survives_record_removal_before_it(self):
        """TLSA lines above the SOA must not shift the serial slot off target."""
        text = (
            f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST} ; RETIRING\n"
            "@ IN SOA ns1.example.com. hostmaster.example.com. (\n"
            "    2024010100 ; serial\n"
            "    3600 )\n"
            f"{ROOT} IN TLSA 1 1 1 {NEW_DIGEST}\n"
        )
        zone = Zone.parse(text, "example.com")
        zone.delete_retiring()
        zone.bump_serial(TODAY)

        assert zone.render() == (
            "@ IN SOA ns1.example.com. hostmaster.example.com. (\n"
            "    2026101800 ; serial\n"
            "    3600 )\n"
            f"{ROOT} IN TLSA 1 1 1 {NEW_DIGEST}\n"
        )

    def test_append_keeps_missing_final_newline(self):
        text = zone_text(tlsa=[f"{ROOT} IN TLSA 1 1 1 {OLD_DIGEST}"]).rstrip("\n")
        zone = Zone.parse(text, "example.com")
        zone.upsert(ROOT, NEW_DIGEST)

        rendered = zone.render()
        assert rendered.endswith(f"; RETIRING\n{ROOT} IN TLSA 1 1 1 {NEW_DIGEST}")


# ─── ZoneStore ────────────────────────────────────────────────────────────────


class TestZoneStore:
    def test_load_missing_file_raises(self, zones_dir):
        with pytest.raises(MalformedZone):
            ZoneStore(zones_dir / "db.nowhere.test").load()

    def test_transaction_without_change_leaves_file_alone(self, zones_dir):
        path = zones_dir / "db.example.com"
        path.write_text(dane_zone())
        before = path.stat().st_mtime_ns

        store = ZoneStore(path, origin="example.com")
        with store.transaction(TODAY) as zone:
            zone.upsert(ROOT, OLD_DIGEST)

        assert path.read_text() == dane_zone()
        assert path.stat().st_mtime_ns == before

    def test_transaction_bumps_serial_once(self, zones_dir):
        path = zones_dir / "db.example.com"
        path.write_text(dane_zone())

        store = ZoneStore(path, origin="example.com")
        with store.transaction(TODAY) as zone:
            zone.upsert(ROOT, NEW_DIGEST)
            zone.upsert(WWW, NEW_DIGEST)

        reloaded = store.load()
        assert reloaded.serial == 2026101800
        assert reloaded.active_digests(WWW) == {NEW_DIGEST}

    def test_exception_inside_transaction_leaves_file_untouched(self, zones_dir):
        path = zones_dir / "db.example.com"
        path.write_text(dane_zone())

        store = ZoneStore(path, origin="example.com")
        with pytest.raises(RuntimeError):
            with store.transaction(TODAY) as zone:
                zone.upsert(ROOT, NEW_DIGEST)
                raise RuntimeError("interrupted")

        assert path.read_text() == dane_zone()

    def test_single_operation_helpers(self, zones_dir):
        path = zones_dir / "db.example.com"
        path.write_text(dane_zone())
        store = ZoneStore(path, origin="example.com")

        assert store.upsert_association(ROOT, NEW_DIGEST, TODAY) is True
        assert store.load().serial == 2026101800

        assert store.retire_association(WWW, TODAY) is True
        assert store.load().serial == 2026101801

        assert store.delete_retiring(TODAY) == 2
        assert store.load().serial == 2026101802

        assert store.bump_serial(TODAY) == 2026101803

    def test_untouched_lines_survive_rewrite(self, zones_dir):
        path = zones_dir / "db.example.com"
        path.write_text(dane_zone())
        ZoneStore(path, origin="example.com").upsert_association(ROOT, NEW_DIGEST, TODAY)

        original = dane_zone().splitlines()
        rewritten = path.read_text().splitlines()
        for line in original:
            if "serial" in line or f"{ROOT} IN TLSA 1 1 1" in line:
                continue
            assert line in rewritten
