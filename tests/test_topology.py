"""Tests for application node config handling and topology assembly."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import topology
from cabinets import CabinetTemplate
from errors import ConsistencyError, InputError, SemanticError
from models import (
    ApplicationNodeConfig,
    CabinetClass,
    CabinetKind,
    CabinetNetwork,
    CablingRow,
    HardwareItem,
    ManagementSwitch,
    SwitchBrand,
    SwitchType,
)
from switches import switch_to_hardware


def river(cabinet_id=3000, kind=CabinetKind.RIVER, air=(0,)):
    cn = {"NMN": CabinetNetwork(cidr="10.106.0.0/22", gateway="10.106.0.1", vlan=1770)}
    return CabinetTemplate(
        cabinet_id=cabinet_id, kind=kind, cabinet_class=CabinetClass.RIVER,
        model=kind.value if kind.is_model else "",
        networks={"cn": cn, "ncn": dict(cn)}, air_cooled_chassis=list(air),
    )


def liquid(cabinet_id, kind, cabinet_class, chassis, air=()):
    return CabinetTemplate(
        cabinet_id=cabinet_id, kind=kind, cabinet_class=cabinet_class,
        model=kind.value if kind.is_model else "",
        networks={"cn": {}}, liquid_cooled_chassis=list(chassis), air_cooled_chassis=list(air),
    )


def switch_hw(xname, switch_type, brand):
    return switch_to_hardware(ManagementSwitch(
        xname=xname, name="sw", type=switch_type, brand=brand, management_address="10.254.0.2",
    ))


def row(source, location, port="", sub="", parent="", rack="x3000", dest_location="u38"):
    return CablingRow(
        Source=source, SourceRack=rack, SourceLocation=location, SourceSubLocation=sub, SourceParent=parent,
        DestinationRack=rack if port else "", DestinationLocation=dest_location if port else "",
        DestinationPort=port,
    )


SEED_ROWS = [
    row("mn01", "u01", "j37"),
    row("wn01", "u03", "j36"),
    row("sn01", "u05", "j35"),
    row("uan01", "u07", "j34"),
    row("nid000001", "u17", "j30", sub="L", parent="SubRack-001-CMC"),
    row("nid000002", "u17", "j31", sub="R", parent="SubRack-001-CMC"),
    row("SubRack-001-CMC", "u17", "j33"),
    row("x3000p0", "p0", "j41"),
    row("sw-hsn01", "u42"),
    row("x3000door-Motiv", " ", "j27"),
    row("sw-25g01", "u39", "j48"),
]


def cabinets(extra_river=(), hill=(), mountain=()):
    templates = {CabinetClass.RIVER: {"x3000": river()}, CabinetClass.HILL: {}, CabinetClass.MOUNTAIN: {}}
    for bucket, items in ((CabinetClass.RIVER, extra_river), (CabinetClass.HILL, hill), (CabinetClass.MOUNTAIN, mountain)):
        for template in items:
            templates[bucket][template.xname] = template
    return templates


def default_switches():
    return {
        "x3000c0w38": switch_hw("x3000c0w38", SwitchType.LEAF_BMC, SwitchBrand.DELL),
        "x3000c0h33s1": switch_hw("x3000c0h33s1", SwitchType.SPINE, SwitchBrand.MELLANOX),
        "d0w1": switch_hw("d0w1", SwitchType.CDU, SwitchBrand.DELL),
    }


APP_CONFIG = ApplicationNodeConfig(
    prefixes=["vn"], prefix_hsm_subroles={"vn": "Visualization"}, aliases={"x3000c0s7b0n0": ["uan01"]},
)


class TestPrepareApplicationConfig:

    def test_normalizes(self):
        config = topology.prepare_application_config(ApplicationNodeConfig(
            prefixes=["VN"], prefix_hsm_subroles={"VN": "Visualization"}, aliases={"X3000C0S07B0N0": ["uan01"]},
        ))
        assert config.prefixes == ["vn"]
        assert config.prefix_hsm_subroles == {"vn": "Visualization"}
        assert config.aliases == {"x3000c0s7b0n0": ["uan01"]}

    def test_duplicate_prefix_after_lowercasing(self):
        with pytest.raises(InputError, match="duplicate application node prefix"):
            topology.prepare_application_config(ApplicationNodeConfig(
                prefix_hsm_subroles={"vn": "Visualization", "VN": "Visualization"},
            ))

    def test_alias_key_must_be_a_node(self):
        with pytest.raises(InputError, match="invalid type NodeBMC"):
            topology.prepare_application_config(ApplicationNodeConfig(aliases={"x3000c0s7b0": ["uan01"]}))

    def test_duplicate_alias(self):
        with pytest.raises(InputError, match="duplicate application node alias: uan01"):
            topology.prepare_application_config(ApplicationNodeConfig(
                aliases={"x3000c0s7b0n0": ["uan01"], "x3000c0s9b0n0": ["uan01"]},
            ))

    def test_placeholder_subrole(self):
        with pytest.raises(InputError, match="~fixme~"):
            topology.prepare_application_config(ApplicationNodeConfig(prefix_hsm_subroles={"vn": "~fixme~"}))


class TestCabinetChecks:

    def make(self, **kwargs):
        return topology.TopologyAssembler(cabinets(**kwargs), {}, [])

    def test_river_ok(self):
        self.make().check_air_cooled("x3000")

    def test_mountain_rejected(self):
        assembler = self.make(mountain=[liquid(1000, CabinetKind.MOUNTAIN, CabinetClass.MOUNTAIN, range(8))])
        with pytest.raises(SemanticError, match="mountain cabinet x1000"):
            assembler.check_air_cooled("x1000")

    def test_hill_rejected_unless_ex2500_with_air(self):
        assembler = self.make(hill=[
            liquid(9000, CabinetKind.HILL, CabinetClass.HILL, [1, 3]),
            liquid(8001, CabinetKind.EX2500, CabinetClass.HILL, [0], air=[4]),
            liquid(8002, CabinetKind.EX2500, CabinetClass.HILL, [0, 1]),
        ])
        with pytest.raises(SemanticError, match="non EX2500"):
            assembler.check_air_cooled("x9000")
        assembler.check_air_cooled("x8001")
        assert assembler.river_chassis("x8001") == "x8001c4"
        with pytest.raises(SemanticError, match="does not contain any air-cooled chassis"):
            assembler.check_air_cooled("x8002")

    def test_air_only_ex2500_uses_chassis_4(self):
        assembler = self.make(extra_river=[river(8000, CabinetKind.EX2500, air=(4,))])
        assert assembler.river_chassis("x8000") == "x8000c4"
        assert assembler.river_chassis("x3000") == "x3000c0"

    def test_unknown_cabinet(self):
        with pytest.raises(ConsistencyError):
            self.make().check_air_cooled("x4000")

    def test_river_switch_in_mountain_cabinet(self):
        switches = {"x1000c0w1": switch_hw("x1000c0w1", SwitchType.LEAF_BMC, SwitchBrand.DELL)}
        assembler = topology.TopologyAssembler(
            cabinets(mountain=[liquid(1000, CabinetKind.MOUNTAIN, CabinetClass.MOUNTAIN, range(8))]), switches, [],
        )
        with pytest.raises(SemanticError, match="x1000c0w1"):
            assembler.check_river_switches()


class TestRows:

    def setup_method(self):
        self.assembler = topology.TopologyAssembler(
            cabinets(), default_switches(), SEED_ROWS, application_config=APP_CONFIG,
        )

    def test_management_node(self):
        item = self.assembler.hardware_from_row(row("mn01", "u01", "j37"))
        assert item.xname == "x3000c0s1b0n0"
        assert item.extra_properties == {
            "Role": "Management", "NID": 100001, "SubRole": "Master", "Aliases": ["ncn-m001"],
        }

    def test_management_nids_count_up(self):
        self.assembler.hardware_from_row(row("mn01", "u01"))
        item = self.assembler.hardware_from_row(row("wn02", "u03"))
        assert item.extra_properties["NID"] == 100002
        assert item.extra_properties["Aliases"] == ["ncn-w002"]

    def test_compute_node(self):
        item = self.assembler.hardware_from_row(row("cn0042", "u20"))
        assert item.xname == "x3000c0s20b0n0"
        assert item.extra_properties == {"Role": "Compute", "NID": 42, "Aliases": ["nid000042"]}

    def test_application_nodes(self):
        uan = self.assembler.hardware_from_row(row("uan01", "u07"))
        assert uan.extra_properties == {"Role": "Application", "SubRole": "UAN", "Aliases": ["uan01"]}
        vn = self.assembler.hardware_from_row(row("vn01", "u09"))
        assert vn.extra_properties == {"Role": "Application", "SubRole": "Visualization"}

    def test_unknown_prefix_is_skipped(self):
        assert self.assembler.hardware_from_row(row("mystery01", "u11")) is None

    def test_pdu_tor_door_and_switch_rows(self):
        assert self.assembler.hardware_from_row(row("x3000p0", "p0")).xname == "x3000m0"
        tor = self.assembler.hardware_from_row(row("sw-hsn01", "u42"))
        assert tor.xname == "x3000c0r42b0"
        assert tor.extra_properties["Username"] == "vault://hms-creds/x3000c0r42b0"
        assert self.assembler.hardware_from_row(row("x3000door-Motiv", " ")) is None
        assert self.assembler.hardware_from_row(row("sw-leaf01", "u40")) is None

    def test_pdu_rack_without_prefix(self):
        assert self.assembler.hardware_from_row(row("pdu0", "p0", rack="3000")).xname == "x3000m0"

    def test_shared_chassis_node_without_nid_uses_bmc_0(self):
        item = self.assembler.hardware_from_row(row("uan02", "u17", parent="SubRack-001-CMC"))
        assert item.xname == "x3000c0s17b0n0"
        assert item.extra_properties["Role"] == "Application"

    def test_bmc_from_dangling_letter(self):
        item = self.assembler.hardware_from_row(row("nid000005", "u20R"))
        assert item.xname == "x3000c0s20b2n0"

    def test_bad_rack(self):
        with pytest.raises(InputError):
            self.assembler.hardware_from_row(row("mn01", "u01", rack="rack-a"))


class TestConnectors:

    def setup_method(self):
        switches = default_switches()
        switches["x3000c0w39"] = switch_hw("x3000c0w39", SwitchType.LEAF_BMC, SwitchBrand.ARUBA)
        switches["x3000c0w40"] = switch_hw("x3000c0w40", SwitchType.LEAF_BMC, SwitchBrand.MELLANOX)
        self.assembler = topology.TopologyAssembler(cabinets(), switches, [])
        self.node = self.assembler.hardware_from_row(row("cn1", "u20"))

    def test_dell(self):
        c = self.assembler.connector_for(self.node, row("cn1", "u20", "j12"))
        assert c.xname == "x3000c0w38j12"
        assert c.extra_properties == {"NodeNics": ["x3000c0s20b0"], "VendorName": "ethernet1/1/12"}

    def test_aruba(self):
        c = self.assembler.connector_for(self.node, row("cn1", "u20", "j12", dest_location="u39"))
        assert c.extra_properties["VendorName"] == "1/1/12"

    def test_mellanox_unsupported(self):
        with pytest.raises(SemanticError, match="Mellanox"):
            self.assembler.connector_for(self.node, row("cn1", "u20", "j12", dest_location="u40"))

    def test_missing_switch(self):
        with pytest.raises(ConsistencyError, match="x3000c0w41"):
            self.assembler.connector_for(self.node, row("cn1", "u20", "j12", dest_location="u41"))

    def test_controller_uses_own_xname(self):
        pdu = self.assembler.hardware_from_row(row("x3000p0", "p0"))
        c = self.assembler.connector_for(pdu, row("x3000p0", "p0", "j41"))
        assert c.extra_properties["NodeNics"] == ["x3000m0"]


class TestLiquidCooled:

    def test_mountain_cabinet(self):
        template = liquid(1000, CabinetKind.MOUNTAIN, CabinetClass.MOUNTAIN, range(8))
        assembler = topology.TopologyAssembler(cabinets(mountain=[template]), {}, [], mountain_starting_nid=1000)
        items = assembler.liquid_cooled_hardware(template)
        assert len(items) == 273
        nids = [i.extra_properties["NID"] for i in items if i.type_string == "Node"]
        assert nids[0] == 1000
        assert nids[-1] == 1255
        assert items[0].xname == "x1000"
        assert items[0].extra_properties == {"Networks": {"cn": {}}}

    def test_hill_model_and_chassis(self):
        template = liquid(9000, CabinetKind.EX2000, CabinetClass.HILL, [1, 3])
        assembler = topology.TopologyAssembler(cabinets(hill=[template]), {}, [])
        items = assembler.liquid_cooled_hardware(template)
        assert len(items) == 69
        assert items[0].extra_properties["Model"] == "EX2000"
        assert {i.xname for i in items if i.type_string == "Chassis"} == {"x9000c1", "x9000c3"}
        assert all(i.hw_class == CabinetClass.HILL for i in items)


class TestAssemble:

    def setup_method(self):
        self.mountain = liquid(1000, CabinetKind.MOUNTAIN, CabinetClass.MOUNTAIN, range(8))
        self.assembler = topology.TopologyAssembler(
            cabinets(mountain=[self.mountain]), default_switches(), SEED_ROWS, application_config=APP_CONFIG,
        )
        self.hardware = self.assembler.build_hardware()

    def test_item_count_and_order(self):
        assert len(self.hardware) == 1 + 9 + 8 + 273 + 3
        assert list(self.hardware) == sorted(self.hardware)

    def test_shared_chassis_nodes(self):
        assert self.hardware["x3000c0s17b1n0"].extra_properties["NID"] == 1
        assert self.hardware["x3000c0s17b2n0"].extra_properties["NID"] == 2
        cmc = self.hardware["x3000c0s17b999"]
        assert cmc.type_string == "NodeBMC"
        assert cmc.extra_properties is None
        assert self.hardware["x3000c0w38j33"].extra_properties["NodeNics"] == ["x3000c0s17b999"]

    def test_river_cabinet_networks(self):
        props = self.hardware["x3000"].extra_properties
        assert props["Networks"]["cn"]["NMN"] == {"CIDR": "10.106.0.0/22", "Gateway": "10.106.0.1", "VLan": 1770}
        assert "Model" not in props

    def test_mgmt_connector(self):
        connector = self.hardware["x3000c0w38j37"]
        assert connector.parent == "x3000c0w38"
        assert connector.extra_properties["NodeNics"] == ["x3000c0s1b0"]

    def test_graph_links_items_to_cabinets(self):
        assert self.assembler.graph.has_edge("x3000", "x3000c0")
        assert self.assembler.graph.has_edge("d0", "d0w1")

    def test_node_in_missing_cabinet(self):
        hardware = dict(self.hardware)
        hardware["x3001c0s1b0n0"] = HardwareItem(
            xname="x3001c0s1b0n0", parent="x3001c0s1b0", type="comptype_node", type_string="Node",
            hw_class=CabinetClass.RIVER,
        )
        with pytest.raises(ConsistencyError, match="x3001"):
            self.assembler.check_hardware(hardware)

    def test_mismatched_type_string(self):
        hardware = dict(self.hardware)
        hardware["x3000c0s1b0n0"] = hardware["x3000c0s1b0n0"].model_copy(update={"type_string": "NodeBMC"})
        with pytest.raises(SemanticError):
            self.assembler.check_hardware(hardware)

    def test_assemble_wraps_networks(self):
        state = topology.TopologyAssembler(
            cabinets(mountain=[self.mountain]), default_switches(), SEED_ROWS, application_config=APP_CONFIG,
        ).assemble({})
        assert state.networks == {}
        document = state.to_document()
        assert document["Hardware"]["x3000m0"]["TypeString"] == "CabinetPDUController"
