"""Tests for address math."""

import ipaddress
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import ipam
from errors import CapacityError, InputError


def net(cidr):
    return ipaddress.IPv4Network(cidr)


class TestSplit:

    def test_partition_covers_parent_in_order(self):
        blocks = ipam.split(net("10.0.0.0/22"), 24)
        assert [str(b) for b in blocks] == ["10.0.0.0/24", "10.0.1.0/24", "10.0.2.0/24", "10.0.3.0/24"]

    def test_blocks_are_disjoint(self):
        blocks = ipam.split(net("10.0.0.0/20"), 23)
        assert len(blocks) == 8
        for i, a in enumerate(blocks):
            for b in blocks[i + 1:]:
                assert not a.overlaps(b)

    def test_larger_than_parent_is_input_error(self):
        with pytest.raises(InputError):
            ipam.split(net("10.0.0.0/24"), 22)


class TestFree:

    def test_first_block_when_nothing_used(self):
        assert ipam.free(net("10.252.0.0/17"), 24, []) == net("10.252.0.0/24")

    def test_skips_used_blocks(self):
        used = [net("10.252.0.0/24"), net("10.252.1.0/24")]
        assert ipam.free(net("10.252.0.0/17"), 24, used) == net("10.252.2.0/24")

    def test_realigns_after_small_block(self):
        used = [net("10.0.0.0/26")]
        assert ipam.free(net("10.0.0.0/22"), 24, used) == net("10.0.1.0/24")

    def test_fills_hole_between_blocks(self):
        used = [net("10.0.0.0/24"), net("10.0.2.0/24")]
        assert ipam.free(net("10.0.0.0/22"), 24, used) == net("10.0.1.0/24")

    def test_exhausted_is_capacity_error(self):
        used = ipam.split(net("10.0.0.0/23"), 24)
        with pytest.raises(CapacityError):
            ipam.free(net("10.0.0.0/23"), 24, used)

    def test_request_larger_than_parent(self):
        with pytest.raises(InputError):
            ipam.free(net("10.0.0.0/24"), 23, [])

    def test_used_block_outside_parent(self):
        with pytest.raises(InputError):
            ipam.free(net("10.0.0.0/24"), 26, [net("192.168.0.0/24")])


class TestHelpers:

    def test_usable_host_addresses(self):
        assert ipam.usable_host_addresses(net("10.0.0.1/32")) == 1
        assert ipam.usable_host_addresses(net("10.0.0.0/31")) == 2
        assert ipam.usable_host_addresses(net("10.0.0.0/24")) == 254

    def test_subnet_within(self):
        cmn = net("10.103.6.0/24")
        assert ipam.subnet_within(cmn, 3) == 29
        assert ipam.subnet_within(cmn, 6) == 28
        assert ipam.subnet_within(cmn, 100) == 25

    def test_subnet_within_too_many_hosts(self):
        with pytest.raises(CapacityError):
            ipam.subnet_within(net("10.103.6.0/24"), 300)

    def test_broadcast_and_add(self):
        n = net("10.0.0.0/24")
        assert str(ipam.broadcast(n)) == "10.0.0.255"
        assert str(ipam.add(n.network_address, 10)) == "10.0.0.10"

    def test_ip_less_than(self):
        a = ipaddress.IPv4Address("10.0.0.9")
        b = ipaddress.IPv4Address("10.0.0.10")
        assert ipam.ip_less_than(a, b)
        assert not ipam.ip_less_than(b, a)

    def test_contains(self):
        assert ipam.contains(net("10.0.0.0/16"), net("10.0.4.0/24"))
        assert not ipam.contains(net("10.0.0.0/24"), net("10.0.0.0/16"))


class TestParsing:

    def test_host_bits_are_accepted(self):
        assert ipam.parse_network("10.1.1.0/16") == net("10.1.0.0/16")

    def test_bad_cidr_is_input_error(self):
        with pytest.raises(InputError) as exc:
            ipam.parse_network("10.0.0.0/33", entity="nmn-cidr")
        assert exc.value.entity == "nmn-cidr"

    def test_bad_address_is_input_error(self):
        with pytest.raises(InputError):
            ipam.parse_address("10.0.0.256")
