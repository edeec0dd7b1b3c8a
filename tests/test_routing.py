#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Prefix extraction, tenant routing and storage key tests
"""
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from axp_exceptions import ConfigError, UnroutableFileError
from routing import (
    PrefixMapHolder,
    add_fingerprint_suffix,
    build_prefix_map,
    build_storage_key,
    extract_prefix,
    load_prefix_map,
    route,
    sanitise_filename,
    timestamp_from_filename,
)


PAYLOAD = {
    "weiss": {"tenantId": "t-weiss", "namespace": "cuit=30712345678", "bucket": "b-weiss"},
    "acme-2": {"tenant_id": "t-acme", "r2Prefix": "acme", "r2Bucket": "b-acme"},
}


class TestExtractPrefix:

    @pytest.mark.parametrize("filename,expected", [
        ("weiss_20251226_101500.pdf", "weiss"),
        ("acme-2_factura.pdf", "acme-2"),
        ("/srv/webdav/data/weiss_x.pdf", "weiss"),
        ("noprefix.pdf", None),
        ("_leading.pdf", None),
        ("we iss_x.pdf", None),
        ("", None),
    ])
    def test_extract_prefix(self, filename, expected):
        assert extract_prefix(filename) == expected


class TestRoute:

    def setup_method(self):
        self.snapshot = build_prefix_map(PAYLOAD, version=7)

    def test_known_prefix_routes_to_tenant(self):
        tenant = route("weiss_20251226.pdf", self.snapshot)
        assert tenant.tenant_id == "t-weiss"
        assert tenant.bucket == "b-weiss"

    def test_aliases_are_accepted(self):
        tenant = route("acme-2_x.pdf", self.snapshot)
        assert (tenant.tenant_id, tenant.namespace, tenant.bucket) == ("t-acme", "acme", "b-acme")

    def test_unknown_prefix_raises(self):
        with pytest.raises(UnroutableFileError) as info:
            route("nobody_x.pdf", self.snapshot)
        assert info.value.prefix == "nobody"

    def test_missing_prefix_raises(self):
        with pytest.raises(UnroutableFileError) as info:
            route("invoice.pdf", self.snapshot)
        assert info.value.prefix is None


class TestPrefixMap:

    def test_malformed_entries_are_skipped(self):
        snapshot = build_prefix_map({
            "ok": {"tenantId": "t", "bucket": "b"},
            "bad prefix": {"tenantId": "t", "bucket": "b"},
            "nobucket": {"tenantId": "t"},
            "notanobject": "t",
        })
        assert len(snapshot) == 1
        assert "ok" in snapshot

    def test_non_object_payload_rejected(self):
        with pytest.raises(ConfigError):
            build_prefix_map(["weiss"])

    def test_versions_increase(self):
        first = build_prefix_map(PAYLOAD)
        second = build_prefix_map(PAYLOAD)
        assert second.version > first.version

    def test_snapshot_is_read_only(self):
        snapshot = build_prefix_map(PAYLOAD)
        with pytest.raises(TypeError):
            snapshot.entries["new"] = None

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_prefix_map(tmp_path / "missing.json")

    def test_reload_swaps_snapshot(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps(PAYLOAD), encoding="utf-8")
        holder = PrefixMapHolder.from_file(str(path))
        old_version = holder.version

        path.write_text(json.dumps({"new": {"tenantId": "t-new", "bucket": "b"}}),
                        encoding="utf-8")
        assert holder.reload() is True
        assert holder.version > old_version
        assert holder.current().lookup("new").tenant_id == "t-new"
        assert holder.current().lookup("weiss") is None

    def test_failed_reload_keeps_previous_snapshot(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps(PAYLOAD), encoding="utf-8")
        holder = PrefixMapHolder.from_file(str(path))
        before = holder.current()

        path.write_text("{not json", encoding="utf-8")
        assert holder.reload() is False
        assert holder.current() is before

    def test_readers_see_whole_snapshots_during_swaps(self):
        first = build_prefix_map({"weiss": {"tenantId": "t-first", "bucket": "b-first"}})
        second = build_prefix_map({"weiss": {"tenantId": "t-second", "bucket": "b-second"}})
        expected = {first.version: ("t-first", "b-first"),
                    second.version: ("t-second", "b-second")}
        holder = PrefixMapHolder(first)
        done = threading.Event()
        seen = []

        def read():
            while True:
                snapshot = holder.current()
                tenant = route("weiss_x.pdf", snapshot)
                seen.append((snapshot.version, (tenant.tenant_id, tenant.bucket)))
                if done.is_set():
                    return

        readers = [threading.Thread(target=read) for _ in range(4)]
        for reader in readers:
            reader.start()
        for n in range(500):
            holder.swap(second if n % 2 == 0 else first)
        done.set()
        for reader in readers:
            reader.join()

        assert seen
        assert all(expected[version] == pair for version, pair in seen)


class TestStorageKey:

    def test_key_layout(self):
        ts = datetime(2025, 1, 26, 12, 34, 56, tzinfo=timezone.utc)
        assert build_storage_key("cuit=33712152449", "test.pdf", ts) == \
            "cuit=33712152449/2025/01/26/test.pdf"

    def test_date_is_taken_in_utc(self):
        ts = datetime(2025, 1, 26, 23, 30, tzinfo=timezone(timedelta(hours=-3)))
        assert build_storage_key("ns", "a.pdf", ts) == "ns/2025/01/27/a.pdf"

    def test_empty_namespace_is_omitted(self):
        ts = datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert build_storage_key("", "a.pdf", ts) == "2025/03/01/a.pdf"

    @pytest.mark.parametrize("raw,expected", [
        ("weiss_factura nro 1.pdf", "weiss_factura_nro_1.pdf"),
        ("../../etc/passwd", "passwd"),
        ("dir\\evil?.pdf", "evil_.pdf"),
        ("..", "_"),
    ])
    def test_sanitise_filename(self, raw, expected):
        assert sanitise_filename(raw) == expected

    def test_fingerprint_suffix(self):
        assert add_fingerprint_suffix("weiss_a.pdf", "deadbeefcafef00d") == "weiss_a_deadbeef.pdf"

    def test_timestamp_from_filename(self):
        assert timestamp_from_filename("weiss_20251226_101500.pdf") == \
            datetime(2025, 12, 26, 10, 15, tzinfo=timezone.utc)
        assert timestamp_from_filename("weiss_invoice.pdf") is None
        assert timestamp_from_filename("weiss_20251399_101500.pdf") is None
