from datetime import datetime, timezone, timedelta

import pytest

from octo.model import (
    ImageInfo, LogEntry, NetworkInfo, SafetyTier, format_bytes, format_ports, parse_created,
    parse_image_tag, parse_rfc3339, strip_container_name, trim_image_id, truncate_id,
)


@pytest.mark.parametrize("ref,expected", [
    ("nginx", ("nginx", "latest")),
    ("nginx:1.25", ("nginx", "1.25")),
    ("library/redis:7", ("library/redis", "7")),
    ("host:5000/app:v1", ("host:5000/app", "v1")),
    ("host:5000/app", ("host:5000/app", "latest")),
])
def test_parse_image_tag(ref, expected):
    assert parse_image_tag(ref) == expected


def test_parse_image_tag_reconstructs_reference():
    for ref in ["app:v1", "registry.example.com:5000/team/app:2.0"]:
        repo, tag = parse_image_tag(ref)
        assert f"{repo}:{tag}" == ref
    repo, tag = parse_image_tag("busybox")
    assert f"{repo}:{tag}" == "busybox:latest"


def test_truncate_and_trim_ids():
    assert truncate_id("abc", 12) == "abc"
    assert truncate_id("0123456789abcdef", 12) == "0123456789ab"
    digest = "e" * 64
    assert trim_image_id("sha256:" + digest) == truncate_id(digest, 12)
    assert trim_image_id("abc") == "abc"


def test_strip_container_name():
    assert strip_container_name(["/web"]) == "web"
    assert strip_container_name(["db"]) == "db"
    assert strip_container_name([]) == ""
    assert strip_container_name(None) == ""


def test_format_ports():
    ports = [
        {'PrivatePort': 80, 'PublicPort': 8080, 'Type': 'tcp'},
        {'PrivatePort': 443, 'Type': 'tcp'},
    ]
    assert format_ports(ports) == "8080->80/tcp, 443/tcp"
    assert format_ports(None) == ""


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 * 1024) == "5.0 MB"
    assert format_bytes(3 * 1024 ** 3) == "3.0 GB"


def test_parse_rfc3339_nanoseconds_and_offsets():
    ts = parse_rfc3339("2026-01-02T03:04:05.123456789Z")
    assert ts == datetime(2026, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)

    ts = parse_rfc3339("2026-01-02T03:04:05+02:00")
    assert ts.utcoffset() == timedelta(hours=2)

    assert parse_rfc3339("not a time") is None
    assert parse_rfc3339("2026-13-02T03:04:05Z") is None


def test_parse_created_accepts_epoch_and_text():
    assert parse_created(0) is None
    assert parse_created(1700000000).year == 2023
    assert parse_created("2026-01-02T03:04:05Z").day == 2
    assert parse_created(None) is None


def test_log_entry_format():
    entry = LogEntry(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc), "stderr", "boom")
    assert entry.format() == "2026-01-02 03:04:05  stderr  boom"
    entry = LogEntry(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc), "stdout", "ok")
    assert entry.format() == "2026-01-02 03:04:05  stdout  ok"


def test_image_reference_and_network_system_flag():
    img = ImageInfo(id="abc", full_id="sha256:abc", repository="app", tag="v1", size=1)
    assert img.reference == "app:v1"
    dangling = ImageInfo(id="abc", full_id="sha256:abc", repository="", tag="", size=1, dangling=True)
    assert dangling.reference == "<none>"

    assert NetworkInfo(id="1", short_id="1", name="bridge", driver="bridge", scope="local").is_system
    assert not NetworkInfo(id="2", short_id="2", name="app_net", driver="bridge", scope="local").is_system


def test_safety_tier_order_and_labels():
    assert SafetyTier.INFORMATIONAL < SafetyTier.LOW_RISK < SafetyTier.MODERATE
    assert SafetyTier.HIGH_RISK < SafetyTier.BULK_DESTRUCTIVE
    assert SafetyTier.BULK_DESTRUCTIVE.label == "Bulk destructive"
