"""Tests for address range expansion and network discovery."""

import pytest

from tasmota_admin.services.discovery import DiscoveryRangeError, discover_devices, expand_range

from tests.fakes import FakePlug


def test_expand_cidr_excludes_network_and_broadcast():
    hosts = expand_range("192.168.10.0/30", 1000)

    assert hosts == ["192.168.10.1", "192.168.10.2"]


def test_expand_span():
    assert expand_range("10.0.0.1-10.0.0.3", 1000) == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]


def test_expand_short_span():
    assert expand_range("10.0.0.250-252", 1000) == ["10.0.0.250", "10.0.0.251", "10.0.0.252"]


def test_expand_single_address():
    assert expand_range("10.0.0.9", 1000) == ["10.0.0.9"]


@pytest.mark.parametrize("ip_range", ["10.0.0.0/16", "10.0.0.1-10.0.9.1", "nonsense", "10.0.0.5-10.0.0.1"])
def test_expand_rejects(ip_range):
    with pytest.raises(DiscoveryRangeError):
        expand_range(ip_range, 1000)


async def test_discover_devices(service, network):
    network.add("10.1.0.2", FakePlug("found-1"))
    network.add("10.1.0.4", FakePlug("found-2"))

    found, summary = await discover_devices(service, expand_range("10.1.0.1-10.1.0.6", 1000), max_concurrency=2, timeout_ms=200)

    assert sorted(status.device_id for status in found) == ["found-1", "found-2"]
    assert summary["total_scanned"] == 6
    assert summary["total_found"] == 2
