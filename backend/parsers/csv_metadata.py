"""Read switch_metadata.csv and ncn_metadata.csv."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Union

from errors import InputError
from models import LogicalNCN, ManagementSwitch, SwitchBrand, SwitchType

SWITCH_COLUMNS = ["Switch Xname", "Type", "Brand"]
NCN_COLUMNS = ["Xname", "Role", "Subrole", "BMC MAC", "Bootstrap MAC", "Bond0 MAC0", "Bond0 MAC1"]


def _read_rows(path: Path, required: list[str]) -> list[dict[str, str]]:
    if not path.exists():
        raise InputError(f"Seed file not found: {path}", entity=str(path))
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        header = [h.strip() for h in reader.fieldnames or []]
        missing = [c for c in required if c not in header]
        if missing:
            raise InputError(f"{path.name} is missing columns: {', '.join(missing)}", entity=str(path))
        return [
            {(k or "").strip(): (v or "").strip() for k, v in row.items()}
            for row in reader
            if any((v or "").strip() for v in row.values())
        ]


def parse_switch_metadata(path: Union[str, Path]) -> list[ManagementSwitch]:
    path = Path(path)
    switches: list[ManagementSwitch] = []
    for row in _read_rows(path, SWITCH_COLUMNS):
        xname = row["Switch Xname"]
        try:
            switch_type = SwitchType(row["Type"])
            brand = SwitchBrand(row["Brand"])
        except ValueError as e:
            raise InputError(f"Invalid switch type or brand for {xname}: {e}", entity=xname) from e
        switches.append(ManagementSwitch(xname=xname, type=switch_type, brand=brand, model=row.get("Model", "")))
    return switches


def parse_ncn_metadata(path: Union[str, Path]) -> list[LogicalNCN]:
    path = Path(path)
    return [
        LogicalNCN(
            xname=row["Xname"],
            role=row["Role"],
            subrole=row["Subrole"],
            bmc_mac=row["BMC MAC"],
            bootstrap_mac=row["Bootstrap MAC"],
            bond0_mac0=row["Bond0 MAC0"],
            bond0_mac1=row["Bond0 MAC1"],
        )
        for row in _read_rows(path, NCN_COLUMNS)
    ]
