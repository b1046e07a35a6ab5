"""
Data models for the topology compiler.

The cluster is modeled as:
- Cabinets grouped by kind (river, hill, mountain and the EX model kinds),
  each kind mapping onto one of three cabinet classes
- Logical networks (HMN, NMN, CMN, CAN, CHN, MTL, HSN, ...) holding an
  ordered list of subnets, each subnet holding named IP reservations
- Management switches classified from hardware-management reservations
- Hardware records keyed by xname, the unit of the final topology state
"""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Cabinet Models ---

class CabinetClass(str, Enum):
    RIVER = "River"          # Air-cooled, standard 19" racks
    HILL = "Hill"            # Liquid-cooled, reduced chassis count
    MOUNTAIN = "Mountain"    # Liquid-cooled, eight chassis


class CabinetKind(str, Enum):
    """Cabinet kinds accepted in cabinet definitions. EX* kinds are models."""
    RIVER = "river"
    HILL = "hill"
    MOUNTAIN = "mountain"
    EX2000 = "EX2000"
    EX2500 = "EX2500"
    EX3000 = "EX3000"
    EX4000 = "EX4000"

    @property
    def cabinet_class(self) -> CabinetClass:
        if self is CabinetKind.RIVER:
            return CabinetClass.RIVER
        if self in (CabinetKind.HILL, CabinetKind.EX2000, CabinetKind.EX2500):
            return CabinetClass.HILL
        return CabinetClass.MOUNTAIN

    @property
    def is_model(self) -> bool:
        return self not in (CabinetKind.RIVER, CabinetKind.HILL, CabinetKind.MOUNTAIN)


# Fixed resolution order for cabinet kinds
VALID_CABINET_KINDS = [
    CabinetKind.RIVER,
    CabinetKind.HILL,
    CabinetKind.MOUNTAIN,
    CabinetKind.EX2000,
    CabinetKind.EX2500,
    CabinetKind.EX3000,
    CabinetKind.EX4000,
]


class ChassisCount(BaseModel):
    """Optional chassis composition override, honored only for EX2500."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    liquid_cooled: int = Field(0, alias="liquid-cooled")
    air_cooled: int = Field(0, alias="air-cooled")


class CabinetDetail(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = 0
    chassis_count: Optional[ChassisCount] = Field(None, alias="chassis-count")
    nmn_subnet: Optional[str] = Field(None, alias="nmn-subnet")
    nmn_vlan: int = Field(0, alias="nmn-vlan")
    hmn_subnet: Optional[str] = Field(None, alias="hmn-subnet")
    hmn_vlan: int = Field(0, alias="hmn-vlan")


class CabinetGroupDetail(BaseModel):
    """All cabinets of one kind, either listed explicitly or generated from count/start."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: CabinetKind = Field(alias="type")
    count: int = Field(0, alias="total_number")
    starting_id: int = Field(0, alias="starting_id")
    cabinets: list[CabinetDetail] = Field(default_factory=list)

    @property
    def cabinet_class(self) -> CabinetClass:
        return self.kind.cabinet_class

    def cabinet_ids(self) -> list[int]:
        return [c.id for c in self.cabinets]

    def length(self) -> int:
        """Expected cabinet count: the explicit list wins over total_number."""
        if not self.cabinets:
            return self.count
        return len(self.cabinets)

    def details_by_id(self) -> dict[int, CabinetDetail]:
        return {c.id: c for c in self.cabinets}

    def populate_ids(self) -> CabinetGroupDetail:
        """Return a copy with one CabinetDetail per cabinet and every id filled in."""
        cabinets: list[CabinetDetail] = []
        for index in range(max(self.count, len(self.cabinets))):
            detail = self.cabinets[index] if index < len(self.cabinets) else CabinetDetail()
            if detail.id == 0:
                detail = detail.model_copy(update={"id": self.starting_id + index})
            cabinets.append(detail)
        return self.model_copy(update={"cabinets": cabinets})


class CabinetNetwork(BaseModel):
    cidr: str
    gateway: str
    vlan: int = 0


# --- Network Models ---

class IPReservation(BaseModel):
    name: str
    address: str
    comment: str = ""                    # Owning identifier, usually an xname
    aliases: list[str] = Field(default_factory=list)

    def to_record(self) -> dict:
        record: dict[str, Any] = {"Name": self.name, "IPAddress": self.address}
        if self.comment:
            record["Comment"] = self.comment
        if self.aliases:
            record["Aliases"] = list(self.aliases)
        return record


class Subnet(BaseModel):
    name: str
    cidr: str                            # Interface form: base address plus prefix
    full_name: str = ""
    net_name: str = ""
    vlan_id: int = 0
    comment: str = ""
    gateway: str
    dhcp_start: Optional[str] = None
    dhcp_end: Optional[str] = None
    reservation_start: Optional[str] = None   # uai_macvlan only
    reservation_end: Optional[str] = None
    metallb_pool_name: Optional[str] = None
    parent_device: str = ""
    interface_name: str = ""
    supernet_hack: bool = False          # Gateway and mask borrowed from the parent network
    reservations: list[IPReservation] = Field(default_factory=list)

    def to_record(self) -> dict:
        """Subnet record as written to the topology state document."""
        record: dict[str, Any] = {
            "Name": self.name,
            "FullName": self.full_name,
            "CIDR": self.cidr,
            "VlanID": self.vlan_id,
            "Gateway": self.gateway,
            "IPReservations": [r.to_record() for r in self.reservations],
        }
        optional = {
            "DHCPStart": self.dhcp_start,
            "DHCPEnd": self.dhcp_end,
            "ReservationStart": self.reservation_start,
            "ReservationEnd": self.reservation_end,
            "MetalLBPoolName": self.metallb_pool_name,
            "Comment": self.comment,
        }
        record.update({k: v for k, v in optional.items() if v})
        return record

    @property
    def interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(self.cidr)

    @property
    def base(self) -> ipaddress.IPv4Address:
        return self.interface.ip

    @property
    def network(self) -> ipaddress.IPv4Network:
        return self.interface.network


class Network(BaseModel):
    name: str
    full_name: str = ""
    cidr: str
    vlan_range: list[int] = Field(default_factory=list)
    mtu: int = 9000
    net_type: str = "ethernet"
    comment: str = ""
    peer_asn: int = 0
    my_asn: int = 0
    system_default_route: str = ""
    parent_device: str = ""
    subnets: list[Subnet] = Field(default_factory=list)

    @property
    def ip_network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.cidr, strict=False)

    def to_record(self) -> dict:
        extra: dict[str, Any] = {
            "CIDR": self.cidr,
            "MTU": self.mtu,
            "VlanRange": list(self.vlan_range),
            "Subnets": [s.to_record() for s in self.subnets],
        }
        optional = {
            "Comment": self.comment,
            "PeerASN": self.peer_asn,
            "MyASN": self.my_asn,
            "SystemDefaultRoute": self.system_default_route,
        }
        extra.update({k: v for k, v in optional.items() if v})
        return {
            "Name": self.name,
            "FullName": self.full_name,
            "IPRanges": [self.cidr],
            "Type": self.net_type,
            "ExtraProperties": extra,
        }


# --- Switch Models ---

class SwitchType(str, Enum):
    SPINE = "Spine"
    LEAF = "Leaf"
    LEAF_BMC = "LeafBMC"
    AGGREGATION = "Aggregation"
    CDU = "CDU"
    EDGE = "Edge"


class SwitchBrand(str, Enum):
    DELL = "Dell"
    MELLANOX = "Mellanox"
    ARUBA = "Aruba"


class ManagementSwitch(BaseModel):
    xname: str
    name: str = ""
    type: SwitchType
    brand: Optional[SwitchBrand] = None
    model: str = ""
    management_address: Optional[str] = None


# --- Node / Cabling Models ---

class CablingRow(BaseModel):
    """One row of the hardware cabling map (hmn_connections.json)."""
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field("", alias="Source")
    source_rack: str = Field("", alias="SourceRack")
    source_location: str = Field("", alias="SourceLocation")
    source_sub_location: str = Field("", alias="SourceSubLocation")
    source_parent: str = Field("", alias="SourceParent")
    destination_rack: str = Field("", alias="DestinationRack")
    destination_location: str = Field("", alias="DestinationLocation")
    destination_port: str = Field("", alias="DestinationPort")


class NCNNetwork(BaseModel):
    network_name: str
    full_name: str = ""
    address: str
    cidr: str
    vlan: int = 0
    gateway: str = ""
    interface_name: str = ""
    parent_interface_name: str = ""


class LogicalNCN(BaseModel):
    xname: str
    role: str
    subrole: str
    bmc_mac: str = ""
    bootstrap_mac: str = ""
    bond0_mac0: str = ""
    bond0_mac1: str = ""
    hostname: str = ""
    aliases: list[str] = Field(default_factory=list)
    bmc_port: str = ""
    bmc_ip: Optional[str] = None
    networks: list[NCNNetwork] = Field(default_factory=list)

    def get_hostname(self) -> str:
        return self.hostname or self.xname


class ApplicationNodeConfig(BaseModel):
    prefixes: list[str] = Field(default_factory=list)
    prefix_hsm_subroles: dict[str, str] = Field(default_factory=dict)
    aliases: dict[str, list[str]] = Field(default_factory=dict)


# --- Topology Models ---

class HardwareItem(BaseModel):
    xname: str
    parent: str
    type: str                            # comptype_* string
    type_string: str                     # Xname type name, e.g. "Node"
    hw_class: CabinetClass
    extra_properties: Optional[dict[str, Any]] = None

    def to_record(self) -> dict:
        record = {
            "Parent": self.parent,
            "Xname": self.xname,
            "Type": self.type,
            "Class": self.hw_class.value,
            "TypeString": self.type_string,
        }
        if self.extra_properties is not None:
            record["ExtraProperties"] = self.extra_properties
        return record


class TopologyState(BaseModel):
    hardware: dict[str, HardwareItem] = Field(default_factory=dict)
    networks: dict[str, Network] = Field(default_factory=dict)

    def to_document(self) -> dict:
        return {
            "Hardware": {x: self.hardware[x].to_record() for x in sorted(self.hardware)},
            "Networks": {n: self.networks[n].to_record() for n in sorted(self.networks)},
        }
