"""
Cabinet Topology Builder — resolve cabinet groups into addressable cabinets.

Two inputs describe cabinets: count/starting-id definitions from the
system config, and an optional cabinets.yaml listing explicit ids and
per-cabinet overrides. For every kind the explicit list wins. Each resolved
cabinet then becomes a CabinetTemplate carrying its class, its chassis
layout and the per-cabinet subnets carved out of the NMN/HMN networks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import xnames
from errors import InputError, SemanticError
from models import (
    VALID_CABINET_KINDS,
    CabinetClass,
    CabinetDetail,
    CabinetGroupDetail,
    CabinetKind,
    CabinetNetwork,
    Network,
)
from subnets import find_subnet

logger = logging.getLogger(__name__)

RIVER_CHASSIS = [0]
HILL_CHASSIS = [1, 3]
MOUNTAIN_CHASSIS = list(range(8))
EX2500_AIR_CHASSIS = [4]

# Per-cabinet subnets live in these networks, newest grouping last.
CABINET_NETWORK_NAMES = ["NMN", "HMN", "NMN_MTN", "HMN_MTN", "NMN_RVR", "HMN_RVR"]

EX2500_EXAMPLE = (
    "EX2500 cabinets require chassis counts to be specified via cabinets.yaml\n"
    "The following is an example how to specify chassis counts in cabinets.yaml:\n"
    "    - id: 8001\n"
    "      hmn-vlan: 3001\n"
    "      nmn-vlan: 2001\n"
    "      chassis-count:\n"
    "          air-cooled: 0\n"
    "          liquid-cooled: 3"
)


@dataclass
class CabinetTemplate:
    """A fully resolved cabinet, ready for topology assembly."""
    cabinet_id: int
    kind: CabinetKind
    cabinet_class: CabinetClass
    model: str = ""
    networks: dict[str, dict[str, CabinetNetwork]] = field(default_factory=dict)
    air_cooled_chassis: list[int] = field(default_factory=list)
    liquid_cooled_chassis: list[int] = field(default_factory=list)

    @property
    def xname(self) -> str:
        return xnames.cabinet(self.cabinet_id)


# --- Filters ---

CabinetFilter = Callable[[CabinetGroupDetail, CabinetDetail], bool]


def kind_filter(kind: CabinetKind) -> CabinetFilter:
    return lambda group, cabinet: group.kind == kind


def class_filter(cabinet_class: CabinetClass) -> CabinetFilter:
    return lambda group, cabinet: group.cabinet_class == cabinet_class


def air_cooled_count_filter(count: int) -> CabinetFilter:
    def _filter(group: CabinetGroupDetail, cabinet: CabinetDetail) -> bool:
        return cabinet.chassis_count is not None and cabinet.chassis_count.air_cooled == count
    return _filter


def liquid_cooled_count_filter(count: int) -> CabinetFilter:
    def _filter(group: CabinetGroupDetail, cabinet: CabinetDetail) -> bool:
        return cabinet.chassis_count is not None and cabinet.chassis_count.liquid_cooled == count
    return _filter


def and_filter(*filters: CabinetFilter) -> CabinetFilter:
    return lambda group, cabinet: all(f(group, cabinet) for f in filters)


def or_filter(*filters: CabinetFilter) -> CabinetFilter:
    return lambda group, cabinet: any(f(group, cabinet) for f in filters)


def not_filter(inner: CabinetFilter) -> CabinetFilter:
    return lambda group, cabinet: not inner(group, cabinet)


# EX2500 with a single air-cooled chassis and nothing else is a plain 19" rack.
EX2500_AIR_ONLY = and_filter(
    kind_filter(CabinetKind.EX2500),
    air_cooled_count_filter(1),
    liquid_cooled_count_filter(0),
)

RIVER_NETWORK_FILTER = or_filter(
    class_filter(CabinetClass.RIVER),
    and_filter(kind_filter(CabinetKind.EX2500), air_cooled_count_filter(1)),
)
HILL_NETWORK_FILTER = and_filter(class_filter(CabinetClass.HILL), not_filter(EX2500_AIR_ONLY))
MOUNTAIN_NETWORK_FILTER = class_filter(CabinetClass.MOUNTAIN)


# --- Cabinet details ---

def build_cabinet_details(
    definitions: dict[CabinetKind, CabinetGroupDetail],
    explicit_groups: Optional[list[CabinetGroupDetail]] = None,
) -> list[CabinetGroupDetail]:
    """Merge count/start definitions with explicit cabinet lists, one group per valid kind."""
    explicit: dict[CabinetKind, CabinetGroupDetail] = {}
    for group in explicit_groups or []:
        if group.kind in explicit:
            raise InputError(f"Cabinet kind {group.kind.value} listed more than once", entity=group.kind.value)
        explicit[group.kind] = group

    groups: list[CabinetGroupDetail] = []
    for kind in VALID_CABINET_KINDS:
        definition = definitions.get(kind) or CabinetGroupDetail(kind=kind)
        if kind in explicit:
            group = explicit[kind]
            length = group.length()
            if definition.count and definition.count != length:
                logger.warning(
                    "cabinets.yaml lists %d %s cabinets, overriding the configured count of %d",
                    length, kind.value, definition.count,
                )
            starting_id = group.starting_id or definition.starting_id
            group = group.model_copy(update={"count": length, "starting_id": starting_id})
        else:
            group = definition.model_copy(update={"kind": kind})
        groups.append(group.populate_ids())

    seen: dict[int, CabinetKind] = {}
    for group in groups:
        for cabinet_id in group.cabinet_ids():
            if cabinet_id in seen:
                raise InputError(
                    f"Cabinet id {cabinet_id} is used by both {seen[cabinet_id].value} and {group.kind.value}",
                    entity=str(cabinet_id),
                )
            seen[cabinet_id] = group.kind

    for group in groups:
        if group.cabinets:
            logger.info("%s cabinets: %s", group.kind.value, group.cabinet_ids())
    return groups


def class_counts(groups: list[CabinetGroupDetail]) -> dict[CabinetClass, int]:
    """Cabinets per resolved class (an air-only EX2500 counts as River)."""
    counts = {c: 0 for c in CabinetClass}
    for group in groups:
        for cabinet in group.cabinets:
            cabinet_class, _, _ = resolve_chassis(group.kind, cabinet)
            counts[cabinet_class] += 1
    return counts


def any_cabinet(groups: list[CabinetGroupDetail], cabinet_filter: CabinetFilter) -> bool:
    return any(cabinet_filter(g, c) for g in groups for c in g.cabinets)


# --- Chassis layout ---

def resolve_chassis(
    kind: CabinetKind, cabinet: CabinetDetail
) -> tuple[CabinetClass, list[int], list[int]]:
    """Return (class, air-cooled chassis, liquid-cooled chassis) for one cabinet."""
    xname = xnames.cabinet(cabinet.id)
    cabinet_class = kind.cabinet_class
    override = cabinet.chassis_count

    if cabinet_class == CabinetClass.RIVER:
        if override is not None:
            raise SemanticError(
                f"Overriding air or liquid cooled chassis counts is not permitted for river cabinets ({xname})",
                entity=xname,
            )
        return cabinet_class, list(RIVER_CHASSIS), []

    if cabinet_class == CabinetClass.MOUNTAIN:
        if override is not None:
            raise SemanticError(
                f"Overriding air or liquid cooled chassis counts is not permitted for mountain cabinets ({xname})",
                entity=xname,
            )
        return cabinet_class, [], list(MOUNTAIN_CHASSIS)

    if kind != CabinetKind.EX2500:
        if override is not None:
            raise SemanticError(
                f"Overriding air or liquid cooled chassis counts is not permitted for hill (EX2000) cabinets ({xname})",
                entity=xname,
            )
        return cabinet_class, [], list(HILL_CHASSIS)

    if override is None:
        raise SemanticError(f"{xname}: {EX2500_EXAMPLE}", entity=xname)

    if override.air_cooled == 0:
        if not 1 <= override.liquid_cooled <= 3:
            raise SemanticError(
                f"Invalid liquid-cooled chassis count specified for hill (EX2500) cabinet {xname}. "
                f"Given {override.liquid_cooled}, expected between 1 and 3",
                entity=xname,
            )
        return CabinetClass.HILL, [], list(range(override.liquid_cooled))

    if override.air_cooled == 1:
        if override.liquid_cooled == 0:
            return CabinetClass.RIVER, list(EX2500_AIR_CHASSIS), []
        if override.liquid_cooled == 1:
            return CabinetClass.HILL, list(EX2500_AIR_CHASSIS), [0]
        raise SemanticError(
            f"Invalid liquid-cooled chassis count specified for hill (EX2500) cabinet {xname}. "
            f"Given {override.liquid_cooled}, expected 1. EX2500 cabinets with 1 air-cooled chassis "
            "can only have 1 liquid-cooled chassis",
            entity=xname,
        )

    raise SemanticError(
        f"Invalid air-cooled chassis count specified for hill (EX2500) cabinet {xname}. "
        f"Given {override.air_cooled}, expected 0 or 1",
        entity=xname,
    )


def validate_cabinets(groups: list[CabinetGroupDetail]) -> None:
    """Fail early on bad xnames or chassis overrides, before any address is handed out."""
    for group in groups:
        for cabinet in group.cabinets:
            xnames.require_type(xnames.cabinet(cabinet.id), "Cabinet")
            resolve_chassis(group.kind, cabinet)


# --- Templates ---

def _cabinet_networks(cabinet_id: int, networks: dict[str, Network]) -> dict[str, CabinetNetwork]:
    found: dict[str, CabinetNetwork] = {}
    for net_name in CABINET_NETWORK_NAMES:
        network = networks.get(net_name)
        if network is None:
            continue
        subnet = find_subnet(network, f"cabinet_{cabinet_id}")
        if subnet is None:
            continue
        key = net_name.removesuffix("_MTN").removesuffix("_RVR")
        found[key] = CabinetNetwork(cidr=str(subnet.network), gateway=subnet.gateway, vlan=subnet.vlan_id)
    return found


def build_cabinet_templates(
    groups: list[CabinetGroupDetail], networks: dict[str, Network]
) -> dict[CabinetClass, dict[str, CabinetTemplate]]:
    """Resolve every cabinet into a template, bucketed by class and keyed by xname."""
    result: dict[CabinetClass, dict[str, CabinetTemplate]] = {c: {} for c in CabinetClass}
    for group in groups:
        for cabinet in group.cabinets:
            xnames.require_type(xnames.cabinet(cabinet.id), "Cabinet")
            cabinet_class, air, liquid = resolve_chassis(group.kind, cabinet)
            cn = _cabinet_networks(cabinet.id, networks)
            template = CabinetTemplate(
                cabinet_id=cabinet.id,
                kind=group.kind,
                cabinet_class=cabinet_class,
                model=group.kind.value if group.kind.is_model else "",
                networks={"cn": cn},
                air_cooled_chassis=air,
                liquid_cooled_chassis=liquid,
            )
            if cabinet_class == CabinetClass.RIVER:
                template.networks["ncn"] = dict(cn)
            result[cabinet_class][template.xname] = template

    for cabinet_class, cabinets in result.items():
        for xname, template in sorted(cabinets.items()):
            if template.model:
                logger.debug("%s cabinet %s - Model %s", cabinet_class.value, xname, template.model)
            else:
                logger.debug("%s cabinet %s", cabinet_class.value, xname)
    return result
