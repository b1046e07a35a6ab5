"""
Switch Classifier — validate switch metadata and turn switches into hardware.

Switches enter twice: as rows of switch_metadata.csv (xname, type, brand,
model) and, after network compilation, as the sw-* reservations of the HMN
network_hardware subnet, which carry the management address. The two are
joined by xname.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import xnames
from errors import ConsistencyError, InputError, SemanticError
from models import (
    CabinetClass,
    HardwareItem,
    ManagementSwitch,
    Subnet,
    SwitchType,
)

logger = logging.getLogger(__name__)

# Longest prefix first so sw-leaf-bmc never matches as sw-leaf.
RESERVATION_PREFIXES: list[tuple[str, SwitchType]] = [
    ("sw-leaf-bmc", SwitchType.LEAF_BMC),
    ("sw-spine", SwitchType.SPINE),
    ("sw-leaf", SwitchType.LEAF),
    ("sw-agg", SwitchType.AGGREGATION),
    ("sw-cdu", SwitchType.CDU),
]

HL_SWITCH_TYPES = (SwitchType.LEAF, SwitchType.SPINE, SwitchType.AGGREGATION)

# Edge switches use the HL xname format but are only addressed on CHN.
HL_XNAME_SWITCH_TYPES = HL_SWITCH_TYPES + (SwitchType.EDGE,)


def validate_switch(switch: ManagementSwitch) -> None:
    """Check the xname is well formed and uses the format its switch type requires."""
    xname = switch.xname
    hms_type = xnames.get_type(xname)
    if hms_type is None:
        raise InputError(f"invalid xname for Switch: {xname}", entity=xname)

    if switch.type == SwitchType.LEAF_BMC:
        if hms_type != "MgmtSwitch":
            raise InputError(
                f"invalid xname used for LeafBMC switch: {xname}, should use xXcCwW format", entity=xname,
            )
    elif switch.type in HL_XNAME_SWITCH_TYPES:
        if hms_type != "MgmtHLSwitch":
            raise InputError(
                f"invalid xname used for {switch.type.value} switch: {xname}, should use xXcChHsS format",
                entity=xname,
            )
    elif switch.type == SwitchType.CDU:
        if hms_type not in ("CDUMgmtSwitch", "MgmtHLSwitch"):
            raise InputError(
                f"invalid xname used for CDU switch: {xname}, should use dDwW format "
                "(if in an adjacent river cabinet to a hill cabinet use the xXcChHsS format)",
                entity=xname,
            )


def normalize_switch(switch: ManagementSwitch) -> ManagementSwitch:
    return switch.model_copy(update={"xname": xnames.normalize(switch.xname)})


def validate_switches(switches: list[ManagementSwitch]) -> list[ManagementSwitch]:
    """Normalize and validate every row; report every bad row before failing."""
    if not switches:
        raise InputError("unable to extract Switches from switch metadata", entity="switch_metadata.csv")
    normalized = [normalize_switch(s) for s in switches]
    bad: list[str] = []
    for switch in normalized:
        try:
            validate_switch(switch)
        except InputError as e:
            logger.error("Switch from csv is invalid: %s", e)
            bad.append(switch.xname)
    if bad:
        raise InputError(f"switch metadata contains invalid switch data: {', '.join(bad)}", entity=bad[0])
    return normalized


def switch_xnames_by_type(switches: Iterable[ManagementSwitch], switch_type: SwitchType) -> list[str]:
    return [s.xname for s in switches if s.type == switch_type]


def extract_switches_from_reservations(subnet: Subnet) -> list[ManagementSwitch]:
    """Rebuild switches from sw-* reservations (comment = xname, address = management IP)."""
    found: list[ManagementSwitch] = []
    for reservation in subnet.reservations:
        for prefix, switch_type in RESERVATION_PREFIXES:
            if reservation.name.startswith(prefix):
                found.append(ManagementSwitch(
                    xname=reservation.comment,
                    name=reservation.name,
                    type=switch_type,
                    management_address=reservation.address,
                ))
                break
    return found


def classify_switches(subnet: Subnet, metadata: list[ManagementSwitch]) -> dict[str, ManagementSwitch]:
    """Join reserved switches with their metadata rows. Every switch needs a brand."""
    by_xname = {s.xname: s for s in metadata}
    result: dict[str, ManagementSwitch] = {}
    for switch in extract_switches_from_reservations(subnet):
        meta: Optional[ManagementSwitch] = by_xname.get(switch.xname)
        if meta is None or meta.brand is None:
            raise SemanticError(f"Couldn't determine switch brand for: {switch.xname}", entity=switch.xname)
        result[switch.xname] = switch.model_copy(update={"brand": meta.brand, "model": meta.model})

    for meta in metadata:
        if meta.xname in result:
            continue
        if meta.type == SwitchType.EDGE:
            logger.info("Edge switch %s is addressed on CHN only", meta.xname)
            continue
        raise ConsistencyError(
            f"Switch {meta.xname} from switch metadata has no address in {subnet.net_name}/{subnet.name}",
            entity=meta.xname,
        )
    return result


def switch_to_hardware(switch: ManagementSwitch) -> HardwareItem:
    brand = switch.brand.value if switch.brand else ""
    parent = xnames.parent(switch.xname)

    if switch.type == SwitchType.LEAF_BMC:
        return HardwareItem(
            xname=switch.xname,
            parent=parent,
            type=xnames.comptype("MgmtSwitch"),
            type_string="MgmtSwitch",
            hw_class=CabinetClass.RIVER,
            extra_properties={
                "IP4addr": switch.management_address or "",
                "Brand": brand,
                "Model": switch.model,
                "SNMPAuthPassword": f"vault://hms-creds/{switch.xname}",
                "SNMPAuthProtocol": "MD5",
                "SNMPPrivPassword": f"vault://hms-creds/{switch.xname}",
                "SNMPPrivProtocol": "DES",
                "SNMPUsername": "testuser",
                "Aliases": [switch.name],
            },
        )

    hl_properties = {
        "IP4addr": switch.management_address or "",
        "Brand": brand,
        "Model": switch.model,
        "Aliases": [switch.name],
    }
    if switch.type in HL_SWITCH_TYPES:
        return HardwareItem(
            xname=switch.xname,
            parent=parent,
            type=xnames.comptype("MgmtHLSwitch"),
            type_string="MgmtHLSwitch",
            hw_class=CabinetClass.RIVER,
            extra_properties=hl_properties,
        )

    if switch.type == SwitchType.CDU:
        # CDU switch racked in the river cabinet next to a hill cabinet
        if xnames.get_type(switch.xname) == "MgmtHLSwitch":
            return HardwareItem(
                xname=switch.xname,
                parent=parent,
                type=xnames.comptype("MgmtHLSwitch"),
                type_string="MgmtHLSwitch",
                hw_class=CabinetClass.RIVER,
                extra_properties=hl_properties,
            )
        return HardwareItem(
            xname=switch.xname,
            parent=parent,
            type=xnames.comptype("CDUMgmtSwitch"),
            type_string="CDUMgmtSwitch",
            hw_class=CabinetClass.MOUNTAIN,
            extra_properties={"Brand": brand, "Model": switch.model, "Aliases": [switch.name]},
        )

    raise SemanticError(f"unknown management switch type: {switch.type}", entity=switch.xname)
