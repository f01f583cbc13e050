import asyncio

from gatekeeper.core.types import StaticLease
from gatekeeper.integrations.static_leases import (
    FileStaticLeaseSource,
    UciStaticLeaseSource,
    create_static_lease_source,
    parse_uci_dhcp,
)

UCI_OUTPUT = """\
dhcp.@dnsmasq[0]=dnsmasq
dhcp.@dnsmasq[0].domainneeded='1'
dhcp.lan=dhcp
dhcp.lan.interface='lan'
dhcp.cfg01fe63=host
dhcp.cfg01fe63.name='printer'
dhcp.cfg01fe63.mac='AA:BB:CC:DD:EE:01'
dhcp.cfg01fe63.ip='192.168.1.10'
dhcp.nas=host
dhcp.nas.name='nas'
dhcp.nas.mac='aa:bb:cc:dd:ee:02' 'aa:bb:cc:dd:ee:03'
dhcp.bad=host
dhcp.bad.mac='zz:zz'
"""


def test_parse_uci_dhcp():
    assert parse_uci_dhcp(UCI_OUTPUT) == [
        StaticLease(mac="aa:bb:cc:dd:ee:01", name="printer"),
        StaticLease(mac="aa:bb:cc:dd:ee:02", name="nas"),
        StaticLease(mac="aa:bb:cc:dd:ee:03", name="nas"),
    ]


def test_parse_uci_dhcp_without_hosts():
    assert parse_uci_dhcp("dhcp.lan=dhcp\ndhcp.lan.interface='lan'\n") == []


def test_file_source(tmp_path):
    path = tmp_path / "static_leases.yaml"
    path.write_text(
        "leases:\n"
        "  - mac: AA-BB-CC-DD-EE-01\n"
        "    name: printer\n"
        "  - mac: broken\n"
        "  - mac: aa:bb:cc:dd:ee:02\n"
    )
    leases = asyncio.run(FileStaticLeaseSource(str(path)).load())

    assert leases == [
        StaticLease(mac="aa:bb:cc:dd:ee:01", name="printer"),
        StaticLease(mac="aa:bb:cc:dd:ee:02", name=None),
    ]


def test_file_source_missing_file(tmp_path):
    assert asyncio.run(FileStaticLeaseSource(str(tmp_path / "nope.yaml")).load()) == []


def test_factory():
    assert isinstance(create_static_lease_source("file", "x.yaml"), FileStaticLeaseSource)
    assert isinstance(create_static_lease_source("uci", "x.yaml"), UciStaticLeaseSource)
