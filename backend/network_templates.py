"""
Network Template Engine — turn the default catalogue into compiled networks.

Each logical network starts from a template (name, CIDR, VLANs, MTU) and a
layout describing which subnets it gets. Building a network always runs the
same steps in the same order:

1. load-balancer pools (CMN/CAN/CHN)
2. HSN base subnet
3. network_hardware, holding one reservation per management switch
4. bootstrap_dhcp, the biggest block that still fits, plus VIP reservations
5. BGP ASNs
6. uai_macvlan (NMN only)
7. cabinet_<id> subnets for the per-class networks
8. supernet hack

Networks are built in sorted name order so output never depends on dict
ordering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import ipam
import subnets
from cabinets import (
    HILL_NETWORK_FILTER,
    MOUNTAIN_NETWORK_FILTER,
    RIVER_NETWORK_FILTER,
    any_cabinet,
    class_filter,
)
from config import CompilerConfig
from errors import SemanticError
from models import CabinetClass, CabinetGroupDetail, ManagementSwitch, Network, SwitchType
from reservations import (
    add_alias,
    add_reservation,
    add_reservation_with_ip,
    add_reservation_with_pin,
    reserve_edge_switch_ips,
    reserve_net_mgmt_ips,
)
from switches import switch_xnames_by_type

logger = logging.getLogger(__name__)

DEFAULT_CABINET_PREFIX = 22
DEFAULT_HARDWARE_PREFIX = 24
DEFAULT_BOOTSTRAP_PREFIX = 24
UAI_PREFIX = 23

# Reservations every uai_macvlan subnet starts with, name -> aliases.
UAI_RESERVATIONS: dict[str, list[str]] = {
    "uai_nmn_blackhole": ["uai-nmn-blackhole"],
    "slurmctld_service": ["slurmctld-service", "slurmctld-service-nmn"],
    "slurmdbd_service": ["slurmdbd-service", "slurmdbd-service-nmn"],
    "pbs_service": ["pbs-service", "pbs-service-nmn"],
    "pbs_comm_service": ["pbs-comm-service", "pbs-comm-service-nmn"],
}

# Load-balancer addresses with a fixed last octet, name -> (octet, aliases).
PINNED_METALLB_RESERVATIONS: dict[str, tuple[int, list[str]]] = {
    "istio-ingressgateway": (
        71,
        "api-gw-service api-gw-service-nmn.local packages registry spire.local "
        "api_gw_service registry.local packages packages.local spire".split(" "),
    ),
    "istio-ingressgateway-local": (81, ["api-gw-service.local"]),
    "rsyslog-aggregator": (72, ["rsyslog-agg-service"]),
    "cray-tftp": (60, ["tftp-service"]),
    "unbound": (225, ["unbound"]),
    "docker-registry": (73, ["docker_registry_service"]),
}

# Pool subnet name, full name and MetalLB pool name per user network.
USER_NETWORK_POOLS: dict[str, list[tuple[str, str, str, str]]] = {
    "CMN": [
        ("static", "cmn_metallb_static_pool", "CMN Static Pool MetalLB", "customer-management-static"),
        ("dynamic", "cmn_metallb_address_pool", "CMN Dynamic MetalLB", "customer-management"),
    ],
    "CAN": [
        ("static", "can_metallb_static_pool", "CAN Static Pool MetalLB", "customer-access-static"),
        ("dynamic", "can_metallb_address_pool", "CAN Dynamic MetalLB", "customer-access"),
    ],
    "CHN": [
        ("static", "chn_metallb_static_pool", "CHN Static Pool MetalLB", "customer-high-speed-static"),
        ("dynamic", "chn_metallb_address_pool", "CHN Dynamic MetalLB", "customer-high-speed"),
    ],
}

VIP_NETWORKS = ("NMN", "HMN", "CMN", "CAN", "CHN")


# --- Default catalogue ---

def default_networks() -> dict[str, Network]:
    """The network templates before any site configuration is applied."""
    return {
        "BICAN": Network(
            name="BICAN", cidr="0.0.0.0/0", vlan_range=[1],
            full_name="SystemDefaultRoute points the network name of the default route",
        ),
        "CAN": Network(
            name="CAN", full_name="Customer Access Network", cidr="10.102.11.0/24",
            vlan_range=[6], parent_device="bond0",
        ),
        "CHN": Network(
            name="CHN", full_name="Customer High-Speed Network", cidr="10.104.7.0/24",
            vlan_range=[5], parent_device="bond0",
        ),
        "CMN": Network(
            name="CMN", full_name="Customer Management Network", cidr="10.103.6.0/24",
            vlan_range=[7], parent_device="bond0",
        ),
        "HMN": Network(
            name="HMN", full_name="Hardware Management Network", cidr="10.254.0.0/17",
            vlan_range=[4], parent_device="bond0",
        ),
        "HMN_MTN": Network(
            name="HMN_MTN", full_name="Mountain Compute Hardware Management Network",
            cidr="10.104.0.0/17", vlan_range=[3000, 3999], parent_device="bond0",
        ),
        "HMN_RVR": Network(
            name="HMN_RVR", full_name="River Compute Hardware Management Network",
            cidr="10.107.0.0/17", vlan_range=[1513, 1769], parent_device="bond0",
        ),
        "HSN": Network(
            name="HSN", full_name="High Speed Network", cidr="10.253.0.0/16",
            vlan_range=[613, 868], net_type="slingshot10",
        ),
        "MTL": Network(
            name="MTL", full_name="Provisioning Network (untagged)", cidr="10.1.1.0/16",
            vlan_range=[0], parent_device="bond0", comment="This network is only valid for the NCNs",
        ),
        "NMN": Network(
            name="NMN", full_name="Node Management Network", cidr="10.252.0.0/17",
            vlan_range=[2], parent_device="bond0",
        ),
        "NMN_MTN": Network(
            name="NMN_MTN", full_name="Mountain Compute Node Management Network",
            cidr="10.100.0.0/17", vlan_range=[2000, 2999], parent_device="bond0",
        ),
        "NMN_RVR": Network(
            name="NMN_RVR", full_name="River Compute Node Management Network",
            cidr="10.106.0.0/17", vlan_range=[1770, 1999], parent_device="bond0",
        ),
        "NMNLB": Network(name="NMNLB", full_name="Node Management Network LoadBalancers", cidr="10.92.100.0/24"),
        "HMNLB": Network(name="HMNLB", full_name="Hardware Management Network LoadBalancers", cidr="10.94.100.0/24"),
    }


@dataclass
class NetworkLayout:
    """How one network is carved up."""
    template: Network
    include_bootstrap_dhcp: bool = False
    bootstrap_prefix: int = DEFAULT_BOOTSTRAP_PREFIX
    include_hardware_subnet: bool = False
    hardware_prefix: int = DEFAULT_HARDWARE_PREFIX
    supernet_hack: bool = False
    subdivide_by_cabinet: bool = False
    group_by_cabinet_type: bool = False
    include_uai_subnet: bool = False
    cabinet_prefix: int = DEFAULT_CABINET_PREFIX
    base_vlan: int = 0


@dataclass
class VlanLedger:
    """Tracks which VLANs are already claimed so two networks never share one."""
    owners: dict[int, str] = field(default_factory=dict)

    def allocate(self, network_name: str, low: int, high: Optional[int] = None) -> None:
        high = low if high is None else high
        if high < low:
            raise SemanticError(f"Invalid VLAN range {low}-{high} for {network_name}", entity=network_name)
        for vlan in range(low, high + 1):
            if vlan == 0:
                continue  # untagged
            owner = self.owners.get(vlan)
            if owner is not None and owner != network_name:
                raise SemanticError(
                    f"Unable to allocate VLAN {vlan} for {network_name}, already used by {owner}",
                    entity=network_name,
                )
            self.owners[vlan] = network_name
        if low == high:
            logger.info("Allocating VLAN %s %d", network_name, low)
        else:
            logger.info("Allocating VLANs %s %d-%d", network_name, low, high)


def default_layouts(
    config: CompilerConfig,
    groups: list[CabinetGroupDetail],
    ncn_count: int,
    switch_count: int,
) -> dict[str, NetworkLayout]:
    """Layouts for every network this site needs, keyed by network name."""
    templates = default_networks()
    cmn = templates["CMN"].ip_network

    layouts: dict[str, NetworkLayout] = {
        "BICAN": NetworkLayout(template=templates["BICAN"]),
        "CMN": NetworkLayout(
            template=templates["CMN"],
            include_bootstrap_dhcp=True,
            bootstrap_prefix=ipam.subnet_within(cmn, ncn_count),
            include_hardware_subnet=True,
            hardware_prefix=ipam.subnet_within(cmn, switch_count),
            supernet_hack=True,
        ),
        "HMN": NetworkLayout(
            template=templates["HMN"],
            include_bootstrap_dhcp=True,
            include_hardware_subnet=True,
            supernet_hack=True,
            group_by_cabinet_type=True,
        ),
        "HSN": NetworkLayout(template=templates["HSN"]),
        "MTL": NetworkLayout(
            template=templates["MTL"],
            include_bootstrap_dhcp=True,
            include_hardware_subnet=True,
            supernet_hack=True,
        ),
        "NMN": NetworkLayout(
            template=templates["NMN"],
            include_bootstrap_dhcp=True,
            include_hardware_subnet=True,
            supernet_hack=True,
            group_by_cabinet_type=True,
            include_uai_subnet=True,
        ),
    }
    if config.builds_user_network("CAN"):
        layouts["CAN"] = NetworkLayout(template=templates["CAN"], include_bootstrap_dhcp=True)
    if config.builds_user_network("CHN"):
        layouts["CHN"] = NetworkLayout(template=templates["CHN"], include_bootstrap_dhcp=True)

    has_mtn = any_cabinet(groups, MOUNTAIN_NETWORK_FILTER) or any_cabinet(groups, HILL_NETWORK_FILTER)
    has_rvr = any_cabinet(groups, RIVER_NETWORK_FILTER)
    for base in ("HMN", "NMN"):
        for suffix, present in (("MTN", has_mtn), ("RVR", has_rvr)):
            if present:
                layouts[f"{base}_{suffix}"] = NetworkLayout(
                    template=templates[f"{base}_{suffix}"],
                    subdivide_by_cabinet=True,
                    group_by_cabinet_type=True,
                )

    return {name: layouts[name] for name in sorted(layouts)}


def apply_config(name: str, layout: NetworkLayout, config: CompilerConfig, ledger: VlanLedger) -> NetworkLayout:
    """Fold site values (CIDR, bootstrap VLAN, overrides) into a layout and claim its VLANs."""
    template = layout.template.model_copy(deep=True)
    vlan = config.bootstrap_vlan_for(name)
    if vlan is not None:
        layout.base_vlan = vlan
        template.vlan_range[0] = vlan
    else:
        layout.base_vlan = template.vlan_range[0] if template.vlan_range else 0

    cidr = config.cidr_for(name)
    if cidr:
        template.cidr = str(ipam.parse_network(cidr, entity=name))

    override = config.network_overrides.get(name)
    if override is not None:
        if override.full_name:
            template.full_name = override.full_name
        if override.mtu:
            template.mtu = override.mtu

    if len(template.vlan_range) == 2:
        ledger.allocate(name, template.vlan_range[0], template.vlan_range[1])
    elif template.vlan_range:
        ledger.allocate(name, template.vlan_range[0])

    layout.template = template
    return layout


# --- Network construction ---

def _add_pools(network: Network, config: CompilerConfig) -> None:
    name = network.name
    vlan = config.bootstrap_vlan_for(name) or 0
    for kind, subnet_name, full_name, pool_name in USER_NETWORK_POOLS[name]:
        cidr = config.static_pool_for(name) if kind == "static" else config.dynamic_pool_for(name)
        if not cidr:
            logger.warning("No %s-%s-pool given, not creating %s", name.lower(), kind, subnet_name)
            continue
        pool = subnets.add_subnet_by_cidr(network, cidr, subnet_name, vlan)
        pool.full_name = full_name
        pool.metallb_pool_name = pool_name
        if name == "CMN" and kind == "static":
            add_reservation_with_ip(pool, "external-dns", config.cmn_external_dns, "site to system lookups")


def build_network(
    layout: NetworkLayout,
    config: CompilerConfig,
    groups: list[CabinetGroupDetail],
    switches: list[ManagementSwitch],
) -> Network:
    network = layout.template.model_copy(deep=True)
    name = network.name
    user_cidr: Optional[str] = None

    # 1. Load-balancer pools
    if name in USER_NETWORK_POOLS:
        user_cidr = config.cidr_for(name) or None
        if user_cidr is not None:
            layout.bootstrap_prefix = ipam.parse_network(user_cidr).prefixlen
            _add_pools(network, config)

    # 2. HSN base subnet
    if name == "HSN" and config.hsn_cidr:
        base = subnets.add_subnet_by_cidr(network, config.hsn_cidr, "hsn_base_subnet", network.vlan_range[0])
        base.full_name = "HSN Base Subnet"

    # 3. Switch management addresses
    if layout.include_hardware_subnet:
        hardware = subnets.add_subnet(network, layout.hardware_prefix, "network_hardware", layout.base_vlan)
        hardware.full_name = f"{name} Management Network Infrastructure"
        reserve_net_mgmt_ips(
            hardware,
            switch_xnames_by_type(switches, SwitchType.SPINE),
            switch_xnames_by_type(switches, SwitchType.LEAF),
            switch_xnames_by_type(switches, SwitchType.LEAF_BMC),
            switch_xnames_by_type(switches, SwitchType.AGGREGATION),
            switch_xnames_by_type(switches, SwitchType.CDU),
        )

    # 4. Bootstrap DHCP
    if layout.include_bootstrap_dhcp and config.cidr_for(name):
        bootstrap = subnets.add_biggest_subnet(network, layout.bootstrap_prefix, "bootstrap_dhcp", layout.base_vlan)
        bootstrap.full_name = f"{name} Bootstrap DHCP Subnet"
        bootstrap.parent_device = network.parent_device
        if name in ("CAN", "CHN"):
            whole = ipam.parse_network(user_cidr or network.cidr)
            bootstrap.cidr = str(whole)
            bootstrap.gateway = config.gateway_for(name) or str(whole.network_address + 1)
        if name == "CAN":
            add_reservation(bootstrap, "can-switch-1")
            add_reservation(bootstrap, "can-switch-2")
        elif name == "CHN":
            reserve_edge_switch_ips(bootstrap, switch_xnames_by_type(switches, SwitchType.EDGE))
        if name in VIP_NETWORKS:
            add_reservation(bootstrap, "kubeapi-vip", "k8s-virtual-ip")
        if name == "NMN":
            add_reservation(bootstrap, "rgw-vip", "rgw-virtual-ip")

    # 5. BGP
    asn = config.asn_for(name)
    if asn is not None:
        network.peer_asn = config.bgp_asn
        network.my_asn = asn

    # 6. UAI macvlan, sharing the NMN VLAN
    if layout.include_uai_subnet:
        uai = subnets.add_subnet(network, UAI_PREFIX, "uai_macvlan", config.nmn_bootstrap_vlan)
        uai.gateway = str(network.ip_network.network_address + 1)
        uai.full_name = "NMN UAIs"
        for reservation_name in sorted(UAI_RESERVATIONS):
            aliases = UAI_RESERVATIONS[reservation_name]
            reservation = add_reservation(uai, reservation_name, ",".join(aliases))
            for alias in aliases:
                add_alias(reservation, alias)

    # 7. Per-cabinet subnets
    if layout.subdivide_by_cabinet:
        if layout.group_by_cabinet_type:
            if name.endswith("RVR"):
                subnets.gen_subnets(network, groups, layout.cabinet_prefix, RIVER_NETWORK_FILTER)
            if name.endswith("MTN"):
                subnets.gen_subnets(network, groups, layout.cabinet_prefix, MOUNTAIN_NETWORK_FILTER)
                subnets.gen_subnets(network, groups, layout.cabinet_prefix, HILL_NETWORK_FILTER)
        else:
            for cabinet_class in (CabinetClass.RIVER, CabinetClass.HILL, CabinetClass.MOUNTAIN):
                subnets.gen_subnets(network, groups, layout.cabinet_prefix, class_filter(cabinet_class))

    # 8. Supernet hack
    if layout.supernet_hack and config.supernet:
        subnets.apply_supernet_hack(network)

    return network


def build_load_balancer_networks(config: CompilerConfig) -> dict[str, Network]:
    """NMNLB and HMNLB, each one /24 MetalLB pool with pinned service addresses."""
    templates = default_networks()

    nmnlb = templates["NMNLB"]
    pool = subnets.add_subnet(nmnlb, 24, "nmn_metallb_address_pool", config.nmn_bootstrap_vlan)
    pool.full_name = "NMN MetalLB"
    pool.metallb_pool_name = "node-management"
    for reservation_name in sorted(PINNED_METALLB_RESERVATIONS):
        octet, aliases = PINNED_METALLB_RESERVATIONS[reservation_name]
        add_reservation_with_pin(pool, reservation_name, ",".join(aliases), octet)

    hmnlb = templates["HMNLB"]
    pool = subnets.add_subnet(hmnlb, 24, "hmn_metallb_address_pool", config.hmn_bootstrap_vlan)
    pool.full_name = "HMN MetalLB"
    pool.metallb_pool_name = "hardware-management"
    for reservation_name in sorted(PINNED_METALLB_RESERVATIONS):
        if reservation_name == "istio-ingressgateway-local":
            continue
        octet, aliases = PINNED_METALLB_RESERVATIONS[reservation_name]
        csv = "" if reservation_name == "istio-ingressgateway" else ",".join(aliases)
        add_reservation_with_pin(pool, reservation_name, csv, octet)

    return {"NMNLB": nmnlb, "HMNLB": hmnlb}


def build_networks(
    config: CompilerConfig,
    groups: list[CabinetGroupDetail],
    switches: list[ManagementSwitch],
    ncn_count: int,
) -> dict[str, Network]:
    """Compile every network of the site, keyed by name in sorted order."""
    ledger = VlanLedger()
    networks: dict[str, Network] = {}
    for name, layout in default_layouts(config, groups, ncn_count, len(switches)).items():
        if name == "CHN" and not config.chn_cidr:
            logger.info("No CHN Network definition provided")
            continue
        if name == "BICAN":
            layout.template.system_default_route = config.bican_user_network_name
        layout = apply_config(name, layout, config, ledger)
        networks[name] = build_network(layout, config, groups, switches)
        logger.debug("Built %s with %d subnets", name, len(networks[name].subnets))

    networks.update(build_load_balancer_networks(config))
    return networks
