"""End-to-end compile of the bundled seed directory."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from errors import ConsistencyError, InputError, SemanticError
from cabinets import build_cabinet_details
from models import (
    CabinetDetail,
    CabinetGroupDetail,
    CabinetKind,
    ChassisCount,
    ManagementSwitch,
    SwitchBrand,
    SwitchType,
)
from pipeline import NCN_OUTPUT, SLS_OUTPUT, check_cabinet_counts, compile_site, load_site_inputs, write_outputs
from reservations import lookup_by_name
from subnets import lookup_subnet

SEED_DIR = Path(__file__).parent.parent / "data" / "seed"


@pytest.fixture(scope="module")
def result():
    return compile_site(load_site_inputs(SEED_DIR))


def by_name(subnet):
    return {r.name: r for r in subnet.reservations}


class TestSeedCompile:

    def test_hardware_count(self, result):
        # river cabinet, 9 cabled devices, 8 connectors, one mountain cabinet, 4 switches
        assert len(result.state.hardware) == 1 + 9 + 8 + 273 + 4

    def test_ncns_merged(self, result):
        assert [(n.xname, n.hostname) for n in result.ncns] == [
            ("x3000c0s1b0n0", "ncn-m001"),
            ("x3000c0s3b0n0", "ncn-w001"),
            ("x3000c0s5b0n0", "ncn-s001"),
        ]
        master = result.ncns[0]
        assert master.bmc_port == "x3000c0w38:ethernet1/1/37"
        assert master.bmc_ip == "10.254.1.3"
        assert [n.network_name for n in master.networks] == ["CAN", "CMN", "HMN", "MTL", "NMN"]

    def test_can_bootstrap(self, result):
        bootstrap = lookup_subnet(result.state.networks["CAN"], "bootstrap_dhcp")
        assert [(r.name, r.address) for r in bootstrap.reservations] == [
            ("can-switch-1", "10.102.11.2"),
            ("can-switch-2", "10.102.11.3"),
            ("kubeapi-vip", "10.102.11.4"),
            ("ncn-m001", "10.102.11.5"),
            ("ncn-w001", "10.102.11.6"),
            ("ncn-s001", "10.102.11.7"),
            ("uan01", "10.102.11.8"),
        ]
        assert bootstrap.dhcp_start == "10.102.11.10"
        assert bootstrap.dhcp_end == "10.102.11.111"

    def test_cmn_dhcp_stops_before_pools(self, result):
        bootstrap = lookup_subnet(result.state.networks["CMN"], "bootstrap_dhcp")
        assert bootstrap.gateway == "10.103.6.1"
        assert bootstrap.dhcp_end == "10.103.6.111"

    def test_hmn_supernet_window_and_bmc(self, result):
        bootstrap = lookup_subnet(result.state.networks["HMN"], "bootstrap_dhcp")
        assert bootstrap.dhcp_start == "10.254.1.10"
        assert bootstrap.dhcp_end == "10.254.1.210"
        bmc = lookup_by_name(bootstrap, "x3000c0s1b0")
        assert bmc.comment == "x3000c0s1b0"
        assert bmc.aliases == ["ncn-m001-mgmt"]
        storage = lookup_by_name(bootstrap, "ncn-s001")
        assert "rgw-vip.hmn" in storage.aliases

    def test_nmn_hostnames_and_uai(self, result):
        nmn = result.state.networks["NMN"]
        reservations = by_name(lookup_subnet(nmn, "bootstrap_dhcp"))
        assert reservations["ncn-m001"].aliases == [
            "ncn-m001-nmn", "time-nmn", "time-nmn.local", "x3000c0s1b0n0", "ncn-m001.local",
        ]
        assert reservations["kubeapi-vip"].aliases == ["kubeapi-vip.local"]
        uai = lookup_subnet(nmn, "uai_macvlan")
        assert uai.reservation_start == "10.252.2.10"
        assert uai.reservation_end == "10.252.3.254"
        assert uai.reservations[0].aliases[-1] == "pbs_comm_service.local"

    def test_uan_and_cabinets(self, result):
        hardware = result.state.hardware
        assert hardware["x3000c0s7b0n0"].extra_properties["Aliases"] == ["uan01"]
        assert hardware["x3000"].extra_properties["Networks"]["cn"]["HMN"]["VLan"] == 1513
        assert hardware["x1000"].extra_properties["Networks"]["cn"]["NMN"]["CIDR"] == "10.100.0.0/22"
        nids = sorted(
            i.extra_properties["NID"] for i in hardware.values()
            if i.type_string == "Node" and i.xname.startswith("x1000")
        )
        assert (nids[0], nids[-1]) == (1000, 1255)

    def test_document_shape(self, result):
        document = result.sls_document()
        assert set(document) == {"Hardware", "Networks"}
        can = document["Networks"]["CAN"]
        assert can["IPRanges"] == ["10.102.11.0/24"]
        assert can["ExtraProperties"]["VlanRange"] == [6]
        assert document["Networks"]["BICAN"]["ExtraProperties"]["SystemDefaultRoute"] == "CAN"
        assert document["Hardware"]["x3000c0w38"]["ExtraProperties"]["Brand"] == "Dell"

    def test_deterministic(self, result):
        again = compile_site(load_site_inputs(SEED_DIR))
        assert json.dumps(again.sls_document(), sort_keys=True) == json.dumps(result.sls_document(), sort_keys=True)
        assert again.ncn_document() == result.ncn_document()

    def test_write_outputs(self, result, tmp_path):
        written = write_outputs(result, tmp_path / "out")
        assert [p.name for p in written] == [SLS_OUTPUT, NCN_OUTPUT]
        sls = json.loads((tmp_path / "out" / SLS_OUTPUT).read_text())
        assert "x3000c0s1b0n0" in sls["Hardware"]
        ncns = json.loads((tmp_path / "out" / NCN_OUTPUT).read_text())
        assert ncns[0]["hostname"] == "ncn-m001"


class TestCompileErrors:

    def inputs(self):
        return load_site_inputs(SEED_DIR)

    def test_ncn_missing_from_cabling(self):
        inputs = self.inputs()
        inputs.cabling = [r for r in inputs.cabling if r.source != "sn01"]
        with pytest.raises(ConsistencyError, match="x3000c0s5b0n0"):
            compile_site(inputs)

    def test_switch_without_metadata_brand(self):
        inputs = self.inputs()
        inputs.switches = [s.model_copy(update={"brand": None}) if s.xname == "d0w1" else s for s in inputs.switches]
        with pytest.raises(SemanticError, match="d0w1"):
            compile_site(inputs)

    def test_ex2500_without_chassis_counts(self):
        inputs = self.inputs()
        inputs.cabinet_groups = [CabinetGroupDetail(kind=CabinetKind.EX2500, cabinets=[CabinetDetail(id=8000)])]
        with pytest.raises(SemanticError, match="x8000"):
            compile_site(inputs)

    def test_air_only_ex2500_gets_river_subnets(self):
        inputs = self.inputs()
        inputs.cabinet_groups = [CabinetGroupDetail(
            kind=CabinetKind.EX2500,
            cabinets=[CabinetDetail(id=8000, chassis_count=ChassisCount(air_cooled=1, liquid_cooled=0))],
        )]
        result = compile_site(inputs)
        assert lookup_subnet(result.state.networks["NMN_RVR"], "cabinet_8000").vlan_id == 1770
        assert result.state.hardware["x8000"].extra_properties["Model"] == "EX2500"

    def test_missing_seed_file(self, tmp_path):
        (tmp_path / "system_config.yaml").write_text("system-name: empty\n")
        with pytest.raises(InputError, match="switch_metadata.csv"):
            load_site_inputs(tmp_path)

    def test_cabinet_count_mismatch(self, result):
        groups = build_cabinet_details({}, [
            CabinetGroupDetail(kind=CabinetKind.RIVER, cabinets=[CabinetDetail(id=3000), CabinetDetail(id=3001)]),
            CabinetGroupDetail(kind=CabinetKind.MOUNTAIN, cabinets=[CabinetDetail(id=1000)]),
        ])
        with pytest.raises(ConsistencyError, match="River"):
            check_cabinet_counts(groups, result.state)

    def test_aggregation_switch_reaches_topology(self):
        inputs = self.inputs()
        inputs.switches.append(ManagementSwitch(
            xname="x3000c0h40s1", type=SwitchType.AGGREGATION, brand=SwitchBrand.ARUBA,
        ))
        result = compile_site(inputs)
        hardware = result.state.hardware["x3000c0h40s1"]
        assert hardware.type_string == "MgmtHLSwitch"
        assert hardware.extra_properties["Aliases"] == ["sw-agg-001"]
        reservation = lookup_by_name(lookup_subnet(result.state.networks["HMN"], "network_hardware"), "sw-agg-001")
        assert reservation.comment == "x3000c0h40s1"
