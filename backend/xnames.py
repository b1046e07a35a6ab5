"""
Xname handling — validate, normalize and build hierarchical hardware addresses.

An xname encodes position: cabinet (x3000) → chassis (c0) → slot (s7) →
board/BMC (b0) → node (n1). Switches, PDUs and router modules hang off the
same tree. Every xname must match exactly one type pattern below.
"""

from __future__ import annotations

import re
from typing import Optional

from errors import SemanticError

# Ordered: the first matching pattern decides the type.
_TYPE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("System", re.compile(r"^s0$")),
    ("CDU", re.compile(r"^d([0-9]+)$")),
    ("CDUMgmtSwitch", re.compile(r"^d([0-9]+)w([0-9]+)$")),
    ("Cabinet", re.compile(r"^x([0-9]{1,4})$")),
    ("CabinetPDUController", re.compile(r"^x([0-9]{1,4})m([0-3])$")),
    ("Chassis", re.compile(r"^x([0-9]{1,4})c([0-7])$")),
    ("ChassisBMC", re.compile(r"^x([0-9]{1,4})c([0-7])b(0)$")),
    ("ComputeModule", re.compile(r"^x([0-9]{1,4})c([0-7])s([0-9]+)$")),
    ("NodeBMC", re.compile(r"^x([0-9]{1,4})c([0-7])s([0-9]+)b([0-9]+)$")),
    ("Node", re.compile(r"^x([0-9]{1,4})c([0-7])s([0-9]+)b([0-9]+)n([0-9]+)$")),
    ("RouterModule", re.compile(r"^x([0-9]{1,4})c([0-7])r([0-9]+)$")),
    ("RouterBMC", re.compile(r"^x([0-9]{1,4})c([0-7])r([0-9]+)b([0-9]+)$")),
    ("MgmtSwitch", re.compile(r"^x([0-9]{1,4})c([0-7])w([1-9][0-9]*)$")),
    ("MgmtSwitchConnector", re.compile(r"^x([0-9]{1,4})c([0-7])w([1-9][0-9]*)j([1-9][0-9]*)$")),
    ("MgmtHLSwitchEnclosure", re.compile(r"^x([0-9]{1,4})c([0-7])h([1-9][0-9]*)$")),
    ("MgmtHLSwitch", re.compile(r"^x([0-9]{1,4})c([0-7])h([1-9][0-9]*)s([1-9])$")),
]

COMPTYPES = {
    "CDU": "comptype_cdu",
    "CDUMgmtSwitch": "comptype_cdu_mgmt_switch",
    "Cabinet": "comptype_cabinet",
    "CabinetPDUController": "comptype_cab_pdu_controller",
    "Chassis": "comptype_chassis",
    "ChassisBMC": "comptype_chassis_bmc",
    "ComputeModule": "comptype_compmod",
    "NodeBMC": "comptype_ncard",
    "Node": "comptype_node",
    "RouterModule": "comptype_rtrmod",
    "RouterBMC": "comptype_rtr_bmc",
    "MgmtSwitch": "comptype_mgmt_switch",
    "MgmtSwitchConnector": "comptype_mgmt_switch_connector",
    "MgmtHLSwitchEnclosure": "comptype_hl_switch_enclosure",
    "MgmtHLSwitch": "comptype_hl_switch",
}

CONTROLLER_TYPES = {"ChassisBMC", "NodeBMC", "RouterBMC", "CabinetPDUController"}

_LEADING_ZEROS = re.compile(r"(?<=[a-z])0+(?=[0-9])")
_LAST_COMPONENT = re.compile(r"^(.*?)([a-z]+[0-9]+)$")


def get_type(xname: str) -> Optional[str]:
    for type_name, pattern in _TYPE_PATTERNS:
        if pattern.match(xname):
            return type_name
    return None


def is_valid(xname: str) -> bool:
    return get_type(xname) is not None


def normalize(xname: str) -> str:
    """Lowercase and strip leading zeros from every ordinal (x03000c0s09 → x3000c0s9)."""
    return _LEADING_ZEROS.sub("", xname.strip().lower())


def parent(xname: str) -> str:
    """Parent xname, one component up. Cabinets and CDUs hang off the system (s0)."""
    type_name = get_type(xname)
    if type_name in ("Cabinet", "CDU"):
        return "s0"
    m = _LAST_COMPONENT.match(xname)
    if not m or not m.group(1):
        return "s0"
    return m.group(1)


def comptype(type_name: str) -> str:
    return COMPTYPES[type_name]


def is_controller(type_name: str) -> bool:
    return type_name in CONTROLLER_TYPES


def require_type(xname: str, expected: str) -> str:
    """Raise SemanticError unless the xname is well formed for the expected type."""
    actual = get_type(xname)
    if actual != expected:
        raise SemanticError(
            f"{xname} is not a valid {expected} xname (parsed as {actual or 'invalid'})",
            entity=xname,
        )
    return xname


def cabinet_ordinal(xname: str) -> int:
    m = re.match(r"^x([0-9]+)", xname)
    if not m:
        raise SemanticError(f"Failed to find cabinet for {xname}", entity=xname)
    return int(m.group(1))


# --- Builders ---

def cabinet(cab: int) -> str:
    return f"x{cab}"


def chassis(cabinet_xname: str, ordinal: int) -> str:
    return f"{cabinet_xname}c{ordinal}"


def chassis_bmc(chassis_xname: str, ordinal: int = 0) -> str:
    return f"{chassis_xname}b{ordinal}"


def compute_module(chassis_xname: str, slot: int) -> str:
    return f"{chassis_xname}s{slot}"


def node_bmc(module_xname: str, ordinal: int) -> str:
    return f"{module_xname}b{ordinal}"


def node(bmc_xname: str, ordinal: int) -> str:
    return f"{bmc_xname}n{ordinal}"


def router_module(chassis_xname: str, slot: int) -> str:
    return f"{chassis_xname}r{slot}"


def router_bmc(module_xname: str, ordinal: int) -> str:
    return f"{module_xname}b{ordinal}"


def mgmt_switch(chassis_xname: str, slot: int) -> str:
    return f"{chassis_xname}w{slot}"


def mgmt_switch_connector(switch_xname: str, port: int) -> str:
    return f"{switch_xname}j{port}"


def pdu_controller(cabinet_xname: str, ordinal: int) -> str:
    return f"{cabinet_xname}m{ordinal}"
