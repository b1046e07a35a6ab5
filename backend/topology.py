"""
Topology Assembler — build the hardware half of the topology state.

River hardware comes from the cabling map (hmn_connections.json), one row
per cabled device. The Source column says what the device is, the rack and
location columns give its xname, and the destination columns give the
switch port it is plugged into. Hill and Mountain hardware needs no
cabling rows: every liquid-cooled chassis is fully populated.

The assembled hardware is checked as a parent -> child graph (networkx): no
emitted item may hang below a cabinet that was never emitted.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import networkx as nx

import xnames
from cabinets import CabinetTemplate
from errors import ConsistencyError, InputError, SemanticError
from models import (
    ApplicationNodeConfig,
    CabinetClass,
    CablingRow,
    HardwareItem,
    Network,
    TopologyState,
)

logger = logging.getLogger(__name__)

FIRST_MANAGEMENT_NID = 100001

DEFAULT_APPLICATION_PREFIXES = ["uan", "gn", "ln"]
DEFAULT_APPLICATION_SUBROLES = {"uan": "UAN", "ln": "UAN", "gn": "Gateway"}
SUBROLE_PLACEHOLDER = "~fixme~"

# Source prefix -> (subrole, alias format)
MANAGEMENT_PREFIXES = [
    ("mn", "Master", "ncn-m{:03d}"),
    ("wn", "Worker", "ncn-w{:03d}"),
    ("sn", "Storage", "ncn-s{:03d}"),
    ("fmn", "FabricManager", "fmn{:03d}"),
]

IGNORED_SWITCH_PREFIXES = ("sw-leaf", "sw-25g", "sw-40g", "sw-agg", "sw-smn")

LIQUID_SLOTS = 8
LIQUID_BMCS_PER_SLOT = 2
LIQUID_NODES_PER_BMC = 2
SHARED_CHASSIS_NODES = 4
SHARED_CHASSIS_BMC = 999

_PORT_RE = re.compile(r"[a-zA-Z]*(\d+)")
_U_RE = re.compile(r"[a-zA-Z]*(\d+)([a-zA-Z]*)")
_TRAILING_NUMBER_RE = re.compile(r"(\d+)$")
_PDU_RE = re.compile(r"(x\d+p|pdu)(\d+)")


# --- Application node configuration ---

def prepare_application_config(config: ApplicationNodeConfig) -> ApplicationNodeConfig:
    """Lowercase prefixes, normalize alias xnames and reject unusable entries."""
    prefixes = [p.lower() for p in config.prefixes]

    subroles: dict[str, str] = {}
    for prefix, subrole in config.prefix_hsm_subroles.items():
        key = prefix.lower()
        if key in subroles:
            raise InputError(
                f"found a duplicate application node prefix after normalization - "
                f"Prefix: {prefix}, Normalized Prefix: {key}",
                entity=prefix,
            )
        subroles[key] = subrole

    aliases: dict[str, list[str]] = {}
    for xname, names in config.aliases.items():
        key = xnames.normalize(xname)
        if key in aliases:
            raise InputError(
                f"found a duplicate application node xname after normalization - "
                f"Xname: {xname}, Normalized Xname: {key}",
                entity=xname,
            )
        aliases[key] = list(names)

    for xname in sorted(aliases):
        hms_type = xnames.get_type(xname)
        if hms_type is None:
            raise InputError(f"invalid xname for application node used as key in Aliases map: {xname}", entity=xname)
        if hms_type != "Node":
            raise InputError(f"invalid type {hms_type} for Application xname in Aliases map: {xname}", entity=xname)

    owners: dict[str, str] = {}
    for xname in sorted(aliases):
        for alias in aliases[xname]:
            if alias in owners:
                raise InputError(
                    f"found duplicate application node alias: {alias} for xnames {owners[alias]} {xname}",
                    entity=alias,
                )
            owners[alias] = xname

    placeholders = sorted(p for p, s in subroles.items() if s == SUBROLE_PLACEHOLDER)
    if placeholders:
        raise InputError(
            f"prefixes {placeholders} have no subrole mapping. Replace `{SUBROLE_PLACEHOLDER}` "
            "placeholders with valid subroles in the Application Node Config file",
            entity=placeholders[0],
        )

    return ApplicationNodeConfig(prefixes=prefixes, prefix_hsm_subroles=subroles, aliases=aliases)


# --- Assembler ---

class TopologyAssembler:
    """Turns resolved cabinets, switches and cabling rows into hardware records."""

    def __init__(
        self,
        cabinets: dict[CabinetClass, dict[str, CabinetTemplate]],
        switches: dict[str, HardwareItem],
        rows: list[CablingRow],
        application_config: Optional[ApplicationNodeConfig] = None,
        mountain_starting_nid: int = 1000,
    ):
        self.river = cabinets.get(CabinetClass.RIVER, {})
        self.hill = cabinets.get(CabinetClass.HILL, {})
        self.mountain = cabinets.get(CabinetClass.MOUNTAIN, {})
        self.switches = switches
        self.rows = rows
        self.application_config = application_config or ApplicationNodeConfig()
        self.mountain_starting_nid = mountain_starting_nid

        self.graph = nx.DiGraph()
        self.node_parents: dict[str, int] = {}
        self.current_management_nid = FIRST_MANAGEMENT_NID
        self.current_mountain_nid = mountain_starting_nid

    # --- Cabinet checks ---

    def check_air_cooled(self, cabinet_xname: str) -> None:
        """Raise unless the cabinet can hold air-cooled (River) hardware."""
        if cabinet_xname in self.river:
            return
        if cabinet_xname in self.hill:
            template = self.hill[cabinet_xname]
            if template.model == "EX2500":
                if template.air_cooled_chassis:
                    return
                raise SemanticError(
                    f"hill cabinet (EX2500) {cabinet_xname} does not contain any air-cooled chassis",
                    entity=cabinet_xname,
                )
            raise SemanticError(
                f"hill cabinet (non EX2500) {cabinet_xname} cannot contain air-cooled hardware",
                entity=cabinet_xname,
            )
        if cabinet_xname in self.mountain:
            raise SemanticError(
                f"mountain cabinet {cabinet_xname} cannot contain air-cooled hardware", entity=cabinet_xname,
            )
        raise ConsistencyError(f"unknown cabinet {cabinet_xname}", entity=cabinet_xname)

    def river_chassis(self, cabinet_xname: str) -> str:
        self.check_air_cooled(cabinet_xname)
        template = self.river.get(cabinet_xname) or self.hill[cabinet_xname]
        ordinal = template.air_cooled_chassis[0] if template.air_cooled_chassis else 0
        return xnames.chassis(cabinet_xname, ordinal)

    def check_river_switches(self) -> None:
        for xname in sorted(self.switches):
            switch = self.switches[xname]
            if switch.hw_class != CabinetClass.RIVER:
                continue
            if switch.type_string == "MgmtSwitch":
                cabinet = xnames.parent(switch.parent)
            elif switch.type_string == "MgmtHLSwitch":
                cabinet = xnames.parent(xnames.parent(switch.parent))
            else:
                raise SemanticError(f"Unknown river management switch type {switch.type_string}", entity=xname)
            try:
                self.check_air_cooled(cabinet)
            except (SemanticError, ConsistencyError) as e:
                raise type(e)(
                    f"Parent cabinet for {switch.type_string} {xname} can not contain air-cooled hardware: {e}",
                    entity=xname,
                ) from e

    # --- Record builders ---

    @staticmethod
    def _hardware(xname: str, hw_class: CabinetClass, extra: Optional[dict] = None) -> HardwareItem:
        type_string = xnames.get_type(xname)
        if type_string is None:
            raise SemanticError(f"Generated invalid xname {xname}", entity=xname)
        return HardwareItem(
            xname=xname,
            parent=xnames.parent(xname),
            type=xnames.comptype(type_string),
            type_string=type_string,
            hw_class=hw_class,
            extra_properties=extra,
        )

    @staticmethod
    def _cabinet_properties(template: CabinetTemplate) -> dict:
        networks = {
            hw_type: {
                name: {"CIDR": net.cidr, "Gateway": net.gateway, "VLan": net.vlan}
                for name, net in sorted(nets.items())
            }
            for hw_type, nets in sorted(template.networks.items())
        }
        props: dict = {"Networks": networks}
        if template.model:
            props["Model"] = template.model
        return props

    @staticmethod
    def _node_properties(nid: int, role: str, subrole: str, aliases: list[str]) -> dict:
        props: dict = {"Role": role}
        if nid:
            props["NID"] = nid
        if subrole:
            props["SubRole"] = subrole
        if aliases:
            props["Aliases"] = aliases
        return props

    # --- Row parsing ---

    @staticmethod
    def _rack_xname(rack: str, row: CablingRow) -> str:
        number = rack.strip().lower().removeprefix("x")
        if not number.isdigit():
            raise InputError(f"Failed to parse cabinet from {rack!r} in row {row.source}", entity=row.source)
        return xnames.cabinet(int(number))

    @staticmethod
    def _u_and_bmc(row: CablingRow) -> tuple[int, int]:
        """Rack U plus BMC ordinal; a trailing or sub-location L/R selects BMC 1/2."""
        m = _U_RE.search(row.source_location)
        if m is None:
            raise InputError(
                f"Did not find a U number in source location {row.source_location!r}", entity=row.source,
            )
        dangling = m.group(2).lower()
        sub = row.source_sub_location.lower()
        bmc = 0
        if sub == "l" or dangling == "l":
            bmc = 1
        elif sub == "r" or dangling == "r":
            bmc = 2
        return int(m.group(1)), bmc

    def _find_row(self, source: str) -> Optional[CablingRow]:
        wanted = source.lower()
        for row in self.rows:
            if row.source.lower() == wanted:
                return row
        return None

    def _application_subrole(self, source: str) -> Optional[str]:
        config = self.application_config
        subroles = dict(DEFAULT_APPLICATION_SUBROLES)
        subroles.update(config.prefix_hsm_subroles)
        for prefix in config.prefixes + DEFAULT_APPLICATION_PREFIXES:
            if source.startswith(prefix):
                return subroles.get(prefix, "")
        return None

    # --- River hardware ---

    def hardware_from_row(self, row: CablingRow) -> Optional[HardwareItem]:
        source = row.source.lower()

        if source == "columbia" or source.startswith("sw-hsn"):
            return self._tor_from_row(row)

        pdu = _PDU_RE.search(source)
        if pdu is not None:
            pdu_xname = xnames.pdu_controller(self._rack_xname(row.source_rack, row), int(pdu.group(2)))
            return self._hardware(pdu_xname, CabinetClass.RIVER)

        if "door" in source:
            logger.warning("Cooling door found, but xname does not yet exist for cooling doors: %s", row.source)
            return None

        if source.startswith(IGNORED_SWITCH_PREFIXES):
            logger.warning(
                "Ignoring management switch %s in cabling map, switches come from switch metadata", row.source,
            )
            return None

        return self._node_from_row(row)

    def _tor_from_row(self, row: CablingRow) -> HardwareItem:
        chassis = self.river_chassis(self._rack_xname(row.source_rack, row))
        u, bmc = self._u_and_bmc(row)
        tor = xnames.router_bmc(xnames.router_module(chassis, u), bmc)
        creds = f"vault://hms-creds/{tor}"
        return self._hardware(tor, CabinetClass.RIVER, {"Username": creds, "Password": creds})

    def _node_from_row(self, row: CablingRow) -> Optional[HardwareItem]:
        source = row.source.lower()
        role, subrole, nid = "Compute", "", 0
        aliases: list[str] = []

        for prefix, management_subrole, alias_format in MANAGEMENT_PREFIXES:
            if source.startswith(prefix):
                index = source.removeprefix(prefix)
                if not index.isdigit():
                    raise InputError(f"Failed to parse index number from {row.source}", entity=row.source)
                role, subrole = "Management", management_subrole
                nid = self.current_management_nid
                aliases.append(alias_format.format(int(index)))
                self.current_management_nid += 1
                break
        else:
            if source.startswith("nid") or source.startswith("cn"):
                m = _TRAILING_NUMBER_RE.search(row.source)
                if m is None:
                    raise InputError(f"Did not find a NID number in {row.source}", entity=row.source)
                nid = int(m.group(1))
                aliases.append(f"nid{nid:06d}")
            elif (app_subrole := self._application_subrole(source)) is not None:
                role, subrole = "Application", app_subrole
            elif "cmc" in source:
                role = "System"
            else:
                logger.warning(
                    "Found unknown source prefix %s. If this is expected to be an Application node, "
                    "update application_node_config.yaml",
                    row.source,
                )
                return None

        if row.source_parent.strip():
            parent_key = row.source_parent.lower()
            u = self.node_parents.get(parent_key, -1)
            if u == -1:
                parent_row = self._find_row(row.source_parent)
                if parent_row is None:
                    raise ConsistencyError(
                        f"Failed to find matching row for parent {row.source_parent} of {row.source}",
                        entity=row.source,
                    )
                location = parent_row.source_location.strip().lower().removeprefix("u")
                if not location.isdigit():
                    raise InputError(
                        f"Failed to parse parent U number {parent_row.source_location!r}", entity=row.source_parent,
                    )
                u = int(location)
                self.node_parents[parent_key] = u
            # Nodes without a NID sit on BMC 0.
            bmc = ((nid - 1) % SHARED_CHASSIS_NODES) + 1 if nid > 0 else 0
        else:
            u, bmc = self._u_and_bmc(row)

        chassis = self.river_chassis(self._rack_xname(row.source_rack, row))
        module = xnames.compute_module(chassis, u)

        if source in self.node_parents:
            # Shared-chassis controller (e.g. the CMC of a multi-node enclosure)
            return self._hardware(xnames.node_bmc(module, SHARED_CHASSIS_BMC), CabinetClass.RIVER)

        node = xnames.node(xnames.node_bmc(module, bmc), 0)
        if role == "Application":
            aliases.extend(self.application_config.aliases.get(node, []))
        return self._hardware(node, CabinetClass.RIVER, self._node_properties(nid, role, subrole, aliases))

    def connector_for(self, hardware: HardwareItem, row: CablingRow) -> HardwareItem:
        """The MgmtSwitchConnector a cabled device plugs into."""
        if xnames.is_controller(hardware.type_string):
            destination = hardware.xname
        else:
            destination = hardware.parent

        chassis = self.river_chassis(self._rack_xname(row.destination_rack, row))
        location = row.destination_location.strip().lower().removeprefix("u")
        if not location.isdigit():
            raise InputError(
                f"Failed to parse destination location {row.destination_location!r}", entity=row.source,
            )
        switch_xname = xnames.mgmt_switch(chassis, int(location))

        m = _PORT_RE.search(row.destination_port)
        if m is None:
            raise InputError(f"Did not find a port number in {row.destination_port!r}", entity=row.source)
        port = int(m.group(1))
        connector = xnames.mgmt_switch_connector(switch_xname, port)

        switch = self.switches.get(switch_xname)
        if switch is None:
            raise ConsistencyError(
                f"Unable to find management switch {switch_xname} for {connector} ({destination})",
                entity=switch_xname,
            )
        brand = (switch.extra_properties or {}).get("Brand", "")
        if brand == "Dell":
            vendor_name = f"ethernet1/1/{port}"
        elif brand == "Aruba":
            vendor_name = f"1/1/{port}"
        elif brand == "Mellanox":
            raise SemanticError(
                f"MgmtSwitchConnector {connector} is not supported on Mellanox switch {switch_xname}",
                entity=connector,
            )
        else:
            raise SemanticError(
                f"Unknown management switch brand {brand!r} for switch {switch_xname}", entity=switch_xname,
            )

        return self._hardware(connector, CabinetClass.RIVER, {"NodeNics": [destination], "VendorName": vendor_name})

    # --- Liquid-cooled hardware ---

    def liquid_cooled_hardware(self, template: CabinetTemplate) -> list[HardwareItem]:
        hardware = [self._hardware(template.xname, template.cabinet_class, self._cabinet_properties(template))]
        for ordinal in template.liquid_cooled_chassis:
            chassis = xnames.chassis(template.xname, ordinal)
            hardware.append(self._hardware(chassis, template.cabinet_class))
            hardware.append(self._hardware(xnames.chassis_bmc(chassis, 0), template.cabinet_class))
            for slot in range(LIQUID_SLOTS):
                for bmc in range(LIQUID_BMCS_PER_SLOT):
                    for node_ordinal in range(LIQUID_NODES_PER_BMC):
                        node = xnames.node(xnames.node_bmc(xnames.compute_module(chassis, slot), bmc), node_ordinal)
                        nid = self.current_mountain_nid
                        hardware.append(self._hardware(
                            node,
                            template.cabinet_class,
                            self._node_properties(nid, "Compute", "", [f"nid{nid:06d}"]),
                        ))
                        self.current_mountain_nid += 1
        return hardware

    # --- Assembly ---

    def build_hardware(self) -> dict[str, HardwareItem]:
        self.check_river_switches()

        cabinets: dict[str, HardwareItem] = {}
        for xname in sorted(self.river):
            template = self.river[xname]
            cabinets[xname] = self._hardware(xname, template.cabinet_class, self._cabinet_properties(template))

        self.node_parents = {row.source_parent.lower(): -1 for row in self.rows if row.source_parent.strip()}

        nodes: dict[str, HardwareItem] = {}
        connections: dict[str, HardwareItem] = {}
        for row in self.rows:
            item = self.hardware_from_row(row)
            if item is None:
                logger.debug("No hardware for cabling row %s", row.source)
                continue
            self.check_air_cooled(self._rack_xname(row.source_rack, row))
            nodes[item.xname] = item

            port = row.destination_port.strip()
            if port and port != "0":
                connector = self.connector_for(item, row)
                connections[connector.xname] = connector

        self.current_mountain_nid = self.mountain_starting_nid
        for group in (self.hill, self.mountain):
            for xname in sorted(group):
                for item in self.liquid_cooled_hardware(group[xname]):
                    nodes[item.xname] = item

        hardware: dict[str, HardwareItem] = {}
        for part in (cabinets, nodes, connections, self.switches):
            hardware.update(part)

        self.check_hardware(hardware)
        return {xname: hardware[xname] for xname in sorted(hardware)}

    def check_hardware(self, hardware: dict[str, HardwareItem]) -> None:
        """Every xname matches its type, and every item's cabinet was emitted."""
        self.graph = nx.DiGraph()
        for xname, item in hardware.items():
            if xnames.get_type(xname) != item.type_string:
                raise SemanticError(f"{xname} is not a valid {item.type_string} xname", entity=xname)
            self.graph.add_node(xname, item=item)
            child = xname
            while child not in ("", "s0"):
                parent = xnames.parent(child)
                self.graph.add_edge(parent, child)
                if xnames.get_type(parent) in ("Cabinet", "CDU", "System"):
                    break
                child = parent

        for node in sorted(self.graph.nodes):
            if xnames.get_type(node) != "Cabinet" or node in hardware:
                continue
            orphans = sorted(nx.descendants(self.graph, node) & hardware.keys())
            if orphans:
                raise ConsistencyError(
                    f"{orphans[0]} belongs to cabinet {node}, which is not part of the topology",
                    entity=orphans[0],
                )

    def assemble(self, networks: dict[str, Network]) -> TopologyState:
        hardware = self.build_hardware()
        counts = {c.value: 0 for c in CabinetClass}
        for item in hardware.values():
            if item.type_string == "Cabinet":
                counts[item.hw_class.value] += 1
        logger.info("Topology has %d hardware items, cabinets %s", len(hardware), counts)
        return TopologyState(hardware=hardware, networks=networks)
