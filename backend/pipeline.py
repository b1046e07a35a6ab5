"""
Compile Pipeline — run every stage in order and produce the output documents.

cabinets -> switches -> networks -> NCN addresses -> topology -> NCN merge
-> UAN reservations -> hostname back-fill and DHCP windows -> documents.

Every stage raises a CompileError subclass on failure; nothing here catches
them. Drivers (main.py, scripts/compile_site.py) decide how to report.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cabinets import build_cabinet_details, build_cabinet_templates, class_counts, validate_cabinets
from config import CompilerConfig, load_config
from errors import ConsistencyError
from models import (
    ApplicationNodeConfig,
    CabinetGroupDetail,
    CablingRow,
    LogicalNCN,
    ManagementSwitch,
    Network,
    TopologyState,
)
from ncn import (
    allocate_ips,
    extract_topology_ncns,
    extract_uans,
    merge_ncns,
    reserve_uans,
    validate_ncns,
)
from network_templates import build_networks
from parsers import (
    parse_application_node_config,
    parse_cabinets_yaml,
    parse_hmn_connections,
    parse_ncn_metadata,
    parse_switch_metadata,
)
from reservations import apply_hostnames
from subnets import bound_dhcp_by_pools, find_subnet, lookup_subnet, update_dhcp_range
from switches import classify_switches, switch_to_hardware, validate_switches
from topology import TopologyAssembler, prepare_application_config

logger = logging.getLogger(__name__)

# Order of the hostname/DHCP finalisation pass.
FINALIZE_ORDER = ["BICAN", "CAN", "CHN", "CMN", "HMN", "HMN_MTN", "HMN_RVR", "MTL", "NMN", "NMN_MTN", "NMN_RVR"]
USER_NETWORKS = ("CAN", "CHN", "CMN")

SYSTEM_CONFIG = "system_config.yaml"
CABINETS_YAML = "cabinets.yaml"
SWITCH_METADATA = "switch_metadata.csv"
NCN_METADATA = "ncn_metadata.csv"
HMN_CONNECTIONS = "hmn_connections.json"
APPLICATION_NODE_CONFIG = "application_node_config.yaml"

SLS_OUTPUT = "sls_input_file.json"
NCN_OUTPUT = "ncn_metadata.json"


@dataclass
class SiteInputs:
    """Everything one compile run reads, already parsed."""
    config: CompilerConfig
    switches: list[ManagementSwitch]
    ncns: list[LogicalNCN]
    cabling: list[CablingRow] = field(default_factory=list)
    cabinet_groups: list[CabinetGroupDetail] = field(default_factory=list)
    application_config: ApplicationNodeConfig = field(default_factory=ApplicationNodeConfig)


@dataclass
class CompileResult:
    state: TopologyState
    ncns: list[LogicalNCN]

    def sls_document(self) -> dict:
        return self.state.to_document()

    def ncn_document(self) -> list[dict]:
        return [ncn.model_dump(mode="json", by_alias=True) for ncn in self.ncns]


def load_site_inputs(seed_dir: Union[str, Path], config_path: Optional[Union[str, Path]] = None) -> SiteInputs:
    """Read a seed directory. cabinets.yaml and application_node_config.yaml are optional."""
    seed_dir = Path(seed_dir)
    config = load_config(config_path or seed_dir / SYSTEM_CONFIG)

    cabinets_path = seed_dir / CABINETS_YAML
    application_path = seed_dir / APPLICATION_NODE_CONFIG
    return SiteInputs(
        config=config,
        switches=parse_switch_metadata(seed_dir / SWITCH_METADATA),
        ncns=parse_ncn_metadata(seed_dir / NCN_METADATA),
        cabling=parse_hmn_connections(seed_dir / HMN_CONNECTIONS),
        cabinet_groups=parse_cabinets_yaml(cabinets_path) if cabinets_path.exists() else [],
        application_config=(
            parse_application_node_config(application_path)
            if application_path.exists() else ApplicationNodeConfig()
        ),
    )


def finalize_networks(networks: dict[str, Network], ncns: list[LogicalNCN], config: CompilerConfig) -> None:
    """Rename NCN reservations to hostnames and place the final DHCP windows."""
    for net_name in FINALIZE_ORDER:
        network = networks.get(net_name)
        if network is None:
            continue

        bootstrap = find_subnet(network, "bootstrap_dhcp")
        if bootstrap is not None:
            apply_hostnames(bootstrap, ncns)
            if net_name in USER_NETWORKS:
                update_dhcp_range(bootstrap, False)
                cidr = config.cidr_for(net_name)
                if cidr:
                    bound_dhcp_by_pools(
                        bootstrap,
                        cidr,
                        config.static_pool_for(net_name) or None,
                        config.dynamic_pool_for(net_name) or None,
                    )
            else:
                update_dhcp_range(bootstrap, config.supernet)

        if net_name == "NMN":
            uai = lookup_subnet(network, "uai_macvlan")
            apply_hostnames(uai, ncns)
            update_dhcp_range(uai, False)


def check_cabinet_counts(groups: list[CabinetGroupDetail], state: TopologyState) -> None:
    """Cabinets per class in the topology must match the resolved cabinet groups."""
    expected = class_counts(groups)
    for cabinet_class, count in expected.items():
        emitted = sum(
            1 for item in state.hardware.values()
            if item.type_string == "Cabinet" and item.hw_class == cabinet_class
        )
        if emitted != count:
            raise ConsistencyError(
                f"Topology holds {emitted} {cabinet_class.value} cabinets, expected {count}",
                entity=cabinet_class.value,
            )


def compile_site(inputs: SiteInputs) -> CompileResult:
    config = inputs.config

    groups = build_cabinet_details(config.cabinet_definitions(), inputs.cabinet_groups)
    validate_cabinets(groups)
    switches = validate_switches(inputs.switches)
    ncns = validate_ncns(inputs.ncns)
    application_config = prepare_application_config(inputs.application_config)

    networks = build_networks(config, groups, switches, len(ncns))
    allocate_ips(ncns, networks)

    switch_subnet = lookup_subnet(networks["HMN"], "network_hardware")
    classified = classify_switches(switch_subnet, switches)
    switch_hardware = {xname: switch_to_hardware(s) for xname, s in sorted(classified.items())}

    templates = build_cabinet_templates(groups, networks)
    assembler = TopologyAssembler(
        templates,
        switch_hardware,
        inputs.cabling,
        application_config=application_config,
        mountain_starting_nid=config.starting_mountain_nid,
    )
    state = assembler.assemble(networks)

    check_cabinet_counts(groups, state)
    merge_ncns(ncns, extract_topology_ncns(state.hardware))

    user_networks = [n for n in ("CAN", "CHN") if config.builds_user_network(n)]
    reserve_uans(networks, extract_uans(state.hardware), user_networks)

    finalize_networks(networks, ncns, config)

    counts = class_counts(groups)
    logger.info(
        "Compiled %s: %d networks, %d hardware items, %d NCNs, cabinets %s",
        config.system_name, len(networks), len(state.hardware), len(ncns),
        {c.value: n for c, n in counts.items()},
    )
    return CompileResult(state=state, ncns=ncns)


def write_outputs(result: CompileResult, output_dir: Union[str, Path]) -> list[Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, document in ((SLS_OUTPUT, result.sls_document()), (NCN_OUTPUT, result.ncn_document())):
        path = output_dir / name
        path.write_text(json.dumps(document, sort_keys=True, indent=2) + "\n")
        written.append(path)
        logger.info("Wrote %s", path)
    return written
