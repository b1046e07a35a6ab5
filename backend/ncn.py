"""
Management node (NCN) handling.

NCNs arrive from ncn_metadata.csv knowing only their xname, role and MACs.
They get one address on every bootstrap_dhcp subnet before the topology is
assembled, then pick up hostname, aliases and BMC switch port from the
assembled hardware.
"""

from __future__ import annotations

import logging
from typing import Optional

import xnames
from errors import ConsistencyError, InputError, SemanticError
from models import HardwareItem, LogicalNCN, NCNNetwork, Network
from reservations import add_reservation
from subnets import find_subnet, gen_interface_name

logger = logging.getLogger(__name__)

BOOTSTRAP_SUBNET = "bootstrap_dhcp"


# --- Validation ---

def validate_ncn(ncn: LogicalNCN) -> None:
    xname = ncn.xname
    hms_type = xnames.get_type(xname)
    if hms_type is None:
        raise InputError(f"invalid xname for NCN: {xname}", entity=xname)
    if hms_type != "Node":
        raise InputError(f"invalid type {hms_type} for NCN xname: {xname}", entity=xname)
    if not ncn.role:
        raise InputError("empty role", entity=xname)
    if not ncn.subrole:
        raise InputError("empty sub-role", entity=xname)


def validate_ncns(ncns: list[LogicalNCN]) -> list[LogicalNCN]:
    """Normalize xnames and check every row, reporting all bad rows before failing."""
    if not ncns:
        raise InputError("unable to extract NCNs from ncn metadata", entity="ncn_metadata.csv")
    normalized = [n.model_copy(update={"xname": xnames.normalize(n.xname)}) for n in ncns]
    bad: list[str] = []
    seen: set[str] = set()
    for ncn in normalized:
        try:
            validate_ncn(ncn)
        except InputError as e:
            logger.error("NCN from csv is invalid: %s", e)
            bad.append(ncn.xname)
            continue
        if ncn.xname in seen:
            logger.error("NCN %s is listed more than once", ncn.xname)
            bad.append(ncn.xname)
        seen.add(ncn.xname)
    if bad:
        raise InputError(f"ncn metadata contains invalid NCN data: {', '.join(bad)}", entity=bad[0])
    return normalized


# --- Address allocation ---

def allocate_ips(ncns: list[LogicalNCN], networks: dict[str, Network]) -> None:
    """Give every NCN one address per bootstrap_dhcp subnet, plus its BMC on HMN.

    Hostnames are unknown here, so reservations are named by xname and the
    xname also goes into the comment for the later rename pass.
    """
    bootstrap = {}
    for name in sorted(networks):
        subnet = find_subnet(networks[name], BOOTSTRAP_SUBNET)
        if subnet is not None:
            bootstrap[name] = subnet

    for ncn in ncns:
        for net_name, subnet in bootstrap.items():
            if net_name == "HMN":
                bmc = add_reservation(subnet, ncn.xname.removesuffix("n0"), f"{ncn.xname}-mgmt")
                ncn.bmc_ip = bmc.address

            reservation = add_reservation(subnet, ncn.xname, ncn.xname)
            gen_interface_name(subnet)
            prefix = subnet.network.prefixlen
            ncn.networks.append(NCNNetwork(
                network_name=net_name,
                full_name=subnet.full_name,
                address=reservation.address,
                cidr=f"{reservation.address}/{prefix}",
                vlan=subnet.vlan_id,
                gateway=subnet.gateway,
                interface_name=subnet.interface_name,
                parent_interface_name=subnet.parent_device,
            ))
        logger.debug("%s: %d network addresses", ncn.xname, len(ncn.networks))


# --- Topology extraction ---

def _node_properties(item: HardwareItem) -> dict:
    return item.extra_properties or {}


def port_for_xname(hardware: dict[str, HardwareItem], xname: str) -> Optional[tuple[str, str]]:
    """(switch xname, vendor port) of the connector cabled to xname, if any."""
    for key in sorted(hardware):
        item = hardware[key]
        if item.type != xnames.comptype("MgmtSwitchConnector"):
            continue
        props = _node_properties(item)
        if xname in props.get("NodeNics", []):
            return item.parent, props.get("VendorName", "")
    return None


def extract_topology_ncns(hardware: dict[str, HardwareItem]) -> list[LogicalNCN]:
    """Management nodes as the assembled topology sees them."""
    found: list[LogicalNCN] = []
    for xname in sorted(hardware):
        item = hardware[xname]
        if item.type != xnames.comptype("Node"):
            continue
        props = _node_properties(item)
        if props.get("Role") != "Management":
            continue
        aliases = list(props.get("Aliases") or [])
        if not aliases:
            raise SemanticError(f"Management node {xname} has no aliases", entity=xname)

        bmc_port = ":"
        port = port_for_xname(hardware, item.parent)
        if port is None:
            logger.warning("Couldn't find switch port for NCN: %s", item.parent)
        else:
            bmc_port = f"{port[0]}:{port[1]}"

        found.append(LogicalNCN(
            xname=xname,
            role=props["Role"],
            subrole=props.get("SubRole", ""),
            hostname=aliases[0],
            aliases=aliases,
            bmc_port=bmc_port,
        ))
    return found


def merge_ncns(ncns: list[LogicalNCN], topology_ncns: list[LogicalNCN]) -> None:
    """Copy hostname, aliases and BMC port from the topology onto the metadata NCNs."""
    by_xname = {n.xname: n for n in topology_ncns}
    for ncn in ncns:
        match = by_xname.get(ncn.xname)
        if match is None:
            raise ConsistencyError(
                f"failed to find NCN from ncn-metadata in generated SLS State: {ncn.xname}",
                entity=ncn.xname,
            )
        ncn.hostname = match.hostname
        ncn.aliases = list(match.aliases)
        ncn.bmc_port = match.bmc_port


# --- User access nodes ---

def extract_uans(hardware: dict[str, HardwareItem]) -> list[LogicalNCN]:
    uans: list[LogicalNCN] = []
    for xname in sorted(hardware):
        item = hardware[xname]
        if item.type != xnames.comptype("Node"):
            continue
        props = _node_properties(item)
        if props.get("Role") != "Application" or props.get("SubRole") != "UAN":
            continue
        aliases = list(props.get("Aliases") or [])
        if not aliases:
            raise InputError(
                "UANs must have at least one alias defined in the application-node-config-yaml file",
                entity=xname,
            )
        uans.append(LogicalNCN(
            xname=xname, role="Application", subrole="UAN", hostname=aliases[0], aliases=aliases,
        ))
    return uans


def reserve_uans(networks: dict[str, Network], uans: list[LogicalNCN], user_networks: list[str]) -> None:
    """Reserve a user network address per UAN, named by hostname and owned by xname."""
    for net_name in user_networks:
        network = networks.get(net_name)
        if network is None:
            continue
        subnet = find_subnet(network, BOOTSTRAP_SUBNET)
        if subnet is None:
            continue
        for uan in uans:
            add_reservation(subnet, uan.hostname, uan.xname)
        if uans:
            logger.info("Reserved %d UAN addresses on %s", len(uans), net_name)
