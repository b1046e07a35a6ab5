"""
Network and subnet operations: allocation, lookup, DHCP ranges, supernet mode.

A Network owns an ordered list of Subnets. Allocation always searches the
network CIDR for the first free aligned block, so subnets inside one network
never overlap (until apply_supernet_hack widens their masks at the very end).
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Callable, Optional

import ipam
from errors import CapacityError, InputError, SemanticError, SubnetNotFound
from models import CabinetDetail, CabinetGroupDetail, Network, Subnet

logger = logging.getLogger(__name__)

CabinetFilter = Callable[[CabinetGroupDetail, CabinetDetail], bool]

SUPERNET_HACK_SUBNETS = [
    "bootstrap_dhcp",
    "network_hardware",
    "can_metallb_static_pool",
    "can_metallb_address_pool",
]

# Smallest prefix add_biggest_subnet will try (exclusive).
_BIGGEST_SUBNET_LIMIT = 29

_MAX_INTERFACE_NET_NAME = 15


def allocated_subnets(network: Network) -> list[ipaddress.IPv4Network]:
    return [s.network for s in network.subnets]


def _new_subnet(network: Network, block: ipaddress.IPv4Network, name: str, vlan: int) -> Subnet:
    if any(s.name == name for s in network.subnets):
        raise SemanticError(f"Subnet {name} already exists in {network.name}", entity=name)
    subnet = Subnet(
        name=name,
        cidr=str(block),
        net_name=network.name,
        gateway=str(block.network_address + 1),
        vlan_id=vlan,
    )
    network.subnets.append(subnet)
    return subnet


def add_subnet(network: Network, prefix: int, name: str, vlan: int = 0) -> Subnet:
    """Allocate the next free /prefix block of the network as a named subnet."""
    block = ipam.free(network.ip_network, prefix, allocated_subnets(network))
    return _new_subnet(network, block, name, vlan)


def add_subnet_by_cidr(network: Network, cidr: str, name: str, vlan: int = 0) -> Subnet:
    desired = ipam.parse_network(cidr, entity=name)
    if not ipam.contains(network.ip_network, desired):
        raise InputError(f"subnet {desired} is not part of {network.ip_network}", entity=name)
    return _new_subnet(network, desired, name, vlan)


def add_biggest_subnet(network: Network, prefix: int, name: str, vlan: int = 0) -> Subnet:
    """Try /prefix first, then progressively smaller blocks until one fits."""
    for candidate in range(prefix, _BIGGEST_SUBNET_LIMIT):
        try:
            return add_subnet(network, candidate, name, vlan)
        except CapacityError:
            logger.debug("No room for /%d %s in %s, trying smaller", candidate, name, network.name)
    raise CapacityError(
        f"no room for {name} subnet within {network.name} (tried from /{prefix} to /{_BIGGEST_SUBNET_LIMIT})",
        entity=name,
    )


def lookup_subnet(network: Network, name: str) -> Subnet:
    found = [s for s in network.subnets if s.name == name]
    if not found:
        raise SubnetNotFound(f'subnet not found "{name}" in {network.name}', entity=name)
    if len(found) > 1:
        raise SemanticError(
            f"found {len(found)} subnets named {name} in {network.name} instead of just one",
            entity=name,
        )
    return found[0]


def find_subnet(network: Network, name: str) -> Optional[Subnet]:
    """Like lookup_subnet, but None when the subnet is absent."""
    try:
        return lookup_subnet(network, name)
    except SubnetNotFound:
        return None


def gen_subnets(
    network: Network,
    groups: list[CabinetGroupDetail],
    prefix: int,
    cabinet_filter: CabinetFilter,
) -> list[Subnet]:
    """Carve one cabinet_<id> subnet per cabinet accepted by the filter.

    The VLAN is the cabinet's own NMN/HMN VLAN when set, otherwise the
    cabinet's index within its group offset by the network's low VLAN. The
    network's VLAN range is narrowed to the VLANs actually handed out.
    """
    created: list[Subnet] = []
    low = network.vlan_range[0] if network.vlan_range else 0

    for group in groups:
        for index, cabinet in enumerate(group.cabinets):
            if not cabinet_filter(group, cabinet):
                continue
            try:
                block = ipam.free(network.ip_network, prefix, allocated_subnets(network))
            except CapacityError as e:
                raise CapacityError(
                    f"{network.name} has no room for cabinet {cabinet.id}: {e}",
                    entity=f"cabinet_{cabinet.id}",
                ) from e

            vlan = 0
            if network.name.startswith("NMN"):
                vlan = cabinet.nmn_vlan
            if network.name.startswith("HMN"):
                vlan = cabinet.hmn_vlan
            if vlan == 0:
                vlan = index + low

            subnet = _new_subnet(network, block, f"cabinet_{cabinet.id}", vlan)
            update_dhcp_range(subnet, False)
            created.append(subnet)

    # Range covers every cabinet subnet, including earlier passes.
    vlans = [s.vlan_id for s in network.subnets if s.name.startswith("cabinet_")]
    if created:
        network.vlan_range = [min(vlans), max(vlans)]
        logger.info(
            "%s: %d cabinet subnets, VLANs %d-%d",
            network.name, len(created), network.vlan_range[0], network.vlan_range[1],
        )
    return created


def update_dhcp_range(subnet: Subnet, use_supernet_gateway: bool) -> None:
    """Place the DHCP window past every reservation.

    Starts at the later of base+10 and base+len(reservations)+2. Ends just
    below broadcast, or 200 addresses past the start in supernet mode where
    the broadcast of the widened mask means nothing. uai_macvlan gets the
    reservation window instead of a DHCP window.
    """
    usable = ipam.usable_host_addresses(subnet.network)
    if len(subnet.reservations) > usable:
        raise CapacityError(
            f"Could not create {subnet.full_name or subnet.name} subnet in {subnet.net_name}. "
            f"There are {len(subnet.reservations)} reservations and only {usable} usable "
            f"ip addresses in the subnet {subnet.cidr}.",
            entity=subnet.name,
        )

    base = subnet.base
    start = max(base + 10, base + len(subnet.reservations) + 2)
    if use_supernet_gateway:
        end = start + 200
    else:
        end = ipam.broadcast(subnet.network) - 1

    if subnet.name == "uai_macvlan":
        subnet.reservation_start = str(start)
        subnet.reservation_end = str(end)
    else:
        subnet.dhcp_start = str(start)
        subnet.dhcp_end = str(end)


def bound_dhcp_by_pools(
    subnet: Subnet,
    network_cidr: str,
    static_pool: Optional[str] = None,
    dynamic_pool: Optional[str] = None,
) -> None:
    """Stop the DHCP window before whichever load-balancer pool starts first."""
    pool_start = ipam.broadcast(ipam.parse_network(network_cidr))
    starts = [ipam.parse_network(p).network_address for p in (static_pool, dynamic_pool) if p]
    if starts:
        pool_start = min(starts)

    if ipam.parse_address(subnet.gateway) == pool_start - 1:
        subnet.dhcp_end = str(pool_start - 2)
    else:
        subnet.dhcp_end = str(pool_start - 1)


def apply_supernet_hack(network: Network) -> None:
    """Give the switch-facing subnets the whole network's gateway and mask.

    The subnet keeps its own base address, so its reservations stay valid,
    but its broadcast domain now overlaps the other subnets of the network.
    """
    supernet = network.ip_network
    for name in SUPERNET_HACK_SUBNETS:
        subnet = find_subnet(network, name)
        if subnet is None:
            continue
        subnet.gateway = str(supernet.network_address + 1)
        subnet.cidr = f"{subnet.base}/{supernet.prefixlen}"
        subnet.supernet_hack = True
        logger.debug("%s/%s now uses supernet %s", network.name, name, supernet)


def gen_interface_name(subnet: Subnet) -> str:
    if not subnet.net_name:
        raise SemanticError("network name is empty", entity=subnet.name)
    if len(subnet.net_name) > _MAX_INTERFACE_NET_NAME:
        raise SemanticError(
            f"network name [{subnet.net_name}] is greater than {_MAX_INTERFACE_NET_NAME} bytes",
            entity=subnet.net_name,
        )
    if subnet.vlan_id == 0:
        subnet.interface_name = subnet.parent_device
    else:
        subnet.interface_name = f"{subnet.parent_device}.{subnet.net_name.lower()}0"
    return subnet.interface_name
