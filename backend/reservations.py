"""
Named IP reservations inside a subnet.

Reservations are made in two phases. During network compilation only the
owner's xname is known, so it is recorded as the reservation comment.
Once the topology is assembled and hostnames exist, apply_hostnames finds
reservations by owner and renames them. Addresses never move in phase two.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable

import ipam
from errors import CapacityError, InputError, ReservationNotFound, SemanticError
from models import IPReservation, LogicalNCN, Subnet

logger = logging.getLogger(__name__)


def reserved_addresses(subnet: Subnet) -> set[ipaddress.IPv4Address]:
    return {ipaddress.IPv4Address(r.address) for r in subnet.reservations}


def _check_name(subnet: Subnet, name: str) -> None:
    if any(r.name == name for r in subnet.reservations):
        raise SemanticError(f"Reservation {name} already exists in {subnet.net_name}/{subnet.name}", entity=name)


def add_reservation(subnet: Subnet, name: str, comment: str = "") -> IPReservation:
    """Reserve the lowest free address at or above base+2."""
    _check_name(subnet, name)
    taken = reserved_addresses(subnet)
    taken.add(ipam.parse_address(subnet.gateway))

    candidate = subnet.base + 2
    last = ipam.broadcast(subnet.network) - 1
    while candidate in taken:
        candidate += 1
    if candidate > last:
        raise CapacityError(f"No free address left in {subnet.net_name}/{subnet.name} for {name}", entity=name)

    reservation = IPReservation(name=name, address=str(candidate), comment=comment)
    subnet.reservations.append(reservation)
    return reservation


def add_reservation_with_pin(subnet: Subnet, name: str, aliases_csv: str, pin: int) -> IPReservation:
    """Reserve base address with its last octet replaced by pin.

    The comma separated aliases double as the comment.
    """
    _check_name(subnet, name)
    if not 0 <= pin <= 255:
        raise InputError(f"Pinned octet {pin} for {name} is outside 0-255", entity=name)
    octets = str(subnet.base).split(".")
    address = ipaddress.IPv4Address(".".join(octets[:3] + [str(pin)]))
    if address not in subnet.network:
        raise SemanticError(f"Pinned address {address} for {name} is not part of {subnet.cidr}", entity=name)
    if subnet.gateway and address == ipam.parse_address(subnet.gateway):
        raise SemanticError(f"Pinned address {address} for {name} is the gateway of {subnet.cidr}", entity=name)
    if address in reserved_addresses(subnet):
        raise SemanticError(f"{address} is already reserved in {subnet.net_name}/{subnet.name}", entity=name)

    reservation = IPReservation(name=name, address=str(address))
    if aliases_csv:
        reservation.comment = aliases_csv
        reservation.aliases = aliases_csv.split(",")
    subnet.reservations.append(reservation)
    return reservation


def add_reservation_with_ip(subnet: Subnet, name: str, address: str, comment: str = "") -> IPReservation:
    ip = ipam.parse_address(address, entity=name)
    if ip not in subnet.network:
        raise SemanticError(
            f'Cannot add "{name}" to {subnet.name} subnet as {address}. {address} is not part of {subnet.cidr}.',
            entity=name,
        )
    _check_name(subnet, name)
    if ip in reserved_addresses(subnet):
        raise SemanticError(f"{address} is already reserved in {subnet.net_name}/{subnet.name}", entity=name)
    reservation = IPReservation(name=name, address=str(ip), comment=comment)
    subnet.reservations.append(reservation)
    return reservation


def lookup_by_name(subnet: Subnet, name: str) -> IPReservation:
    for reservation in subnet.reservations:
        if reservation.name == name:
            return reservation
    raise ReservationNotFound(f"No reservation {name} in {subnet.net_name}/{subnet.name}", entity=name)


def add_alias(reservation: IPReservation, alias: str) -> None:
    if alias not in reservation.aliases:
        reservation.aliases.append(alias)


def reserve_net_mgmt_ips(
    subnet: Subnet,
    spines: list[str],
    leafs: list[str],
    leaf_bmcs: list[str],
    aggs: list[str],
    cdus: list[str],
) -> None:
    """Reserve one address per management switch, named by role and position."""
    for template, xnames in (
        ("sw-spine-{:03d}", spines),
        ("sw-leaf-{:03d}", leafs),
        ("sw-leaf-bmc-{:03d}", leaf_bmcs),
        ("sw-agg-{:03d}", aggs),
        ("sw-cdu-{:03d}", cdus),
    ):
        for i, xname in enumerate(xnames, start=1):
            add_reservation(subnet, template.format(i), xname)


def reserve_edge_switch_ips(subnet: Subnet, edges: list[str]) -> None:
    for i, xname in enumerate(edges, start=1):
        add_reservation(subnet, f"chn-switch-{i}", xname)


def apply_hostnames(subnet: Subnet, ncns: Iterable[LogicalNCN]) -> None:
    """Rename xname-keyed reservations now that NCN hostnames are known."""
    net = subnet.net_name.lower()
    ncns = list(ncns)
    for reservation in subnet.reservations:
        for ncn in ncns:
            hostname = ncn.get_hostname()
            if reservation.comment == ncn.xname:
                reservation.name = hostname
                reservation.aliases.append(f"{hostname}-{net}")
                reservation.aliases.append(f"time-{net}")
                reservation.aliases.append(f"time-{net}.local")
                if ncn.subrole.lower() == "storage" and net == "hmn":
                    reservation.aliases.append("rgw-vip.hmn")
                if net == "nmn":
                    reservation.aliases.append(ncn.xname)
            if reservation.comment == f"{ncn.xname}-mgmt":
                reservation.comment = reservation.name
                reservation.aliases.append(f"{hostname}-mgmt")
        if subnet.net_name == "NMN":
            reservation.aliases.append(f"{reservation.name}.local")
