"""
Address math for IPv4 blocks.

All helpers take and return ``ipaddress`` objects. Parsing errors are
reported as InputError; running out of space is a CapacityError.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, Union

from errors import CapacityError, InputError

IPv4Network = ipaddress.IPv4Network
IPv4Address = ipaddress.IPv4Address

# Smallest block tried by subnet_within before giving up.
_LARGEST_WITHIN_PREFIX = 16


def parse_network(cidr: Union[str, IPv4Network], entity: str = "") -> IPv4Network:
    """Parse a CIDR, accepting host bits (10.1.1.1/16 → 10.1.0.0/16)."""
    if isinstance(cidr, IPv4Network):
        return cidr
    try:
        return ipaddress.IPv4Network(str(cidr).strip(), strict=False)
    except ValueError as e:
        raise InputError(f"Invalid CIDR {cidr!r}: {e}", entity=entity or str(cidr)) from e


def parse_address(address: Union[str, IPv4Address], entity: str = "") -> IPv4Address:
    if isinstance(address, IPv4Address):
        return address
    try:
        return ipaddress.IPv4Address(str(address).strip())
    except ValueError as e:
        raise InputError(f"Invalid IP address {address!r}: {e}", entity=entity or str(address)) from e


def split(parent: IPv4Network, prefix: int) -> list[IPv4Network]:
    """Partition parent into equal blocks of the given prefix length, in address order."""
    if prefix < parent.prefixlen or prefix > 32:
        raise InputError(f"Cannot split {parent} into /{prefix} blocks", entity=str(parent))
    return list(parent.subnets(new_prefix=prefix))


def free(parent: IPv4Network, prefix: int, used: Iterable[IPv4Network]) -> IPv4Network:
    """First aligned /prefix block inside parent that overlaps nothing in used."""
    if prefix < parent.prefixlen:
        raise InputError(
            f"Requested /{prefix} does not fit in {parent}",
            entity=str(parent),
        )
    used = sorted(used, key=lambda n: (int(n.network_address), n.prefixlen))
    for block in used:
        if not parent.overlaps(block):
            raise InputError(f"{block} is not contained by {parent}", entity=str(parent))

    step = 2 ** (32 - prefix)
    candidate = int(parent.network_address)
    end = int(parent.broadcast_address)
    while candidate + step - 1 <= end:
        block = ipaddress.IPv4Network((candidate, prefix))
        clash = next((u for u in used if u.overlaps(block)), None)
        if clash is None:
            return block
        # Jump past the clashing block, then realign.
        past = int(clash.broadcast_address) + 1
        candidate = max(candidate + step, ((past + step - 1) // step) * step)
    raise CapacityError(f"No free /{prefix} left in {parent}", entity=str(parent))


def add(address: IPv4Address, n: int) -> IPv4Address:
    return address + n


def broadcast(network: IPv4Network) -> IPv4Address:
    return network.broadcast_address


def ip_less_than(a: IPv4Address, b: IPv4Address) -> bool:
    return int(a) < int(b)


def contains(network: IPv4Network, subnet: IPv4Network) -> bool:
    return subnet.subnet_of(network)


def usable_host_addresses(network: IPv4Network) -> int:
    if network.prefixlen == 32:
        return 1
    if network.prefixlen == 31:
        return 2
    return network.num_addresses - 2


def subnet_within(network: IPv4Network, hosts: int) -> int:
    """Prefix length of the smallest block with strictly more than `hosts` usable addresses."""
    for prefix in range(30, _LARGEST_WITHIN_PREFIX - 1, -1):
        if 2 ** (32 - prefix) - 2 > hosts:
            if prefix < network.prefixlen:
                break
            return prefix
    raise CapacityError(f"{network} cannot hold {hosts} hosts", entity=str(network))
