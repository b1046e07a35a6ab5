"""Read the YAML and JSON seed files into compiler records."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from errors import InputError
from models import ApplicationNodeConfig, CabinetGroupDetail, CablingRow


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise InputError(f"Seed file not found: {path}", entity=str(path))
    with open(path) as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InputError(f"{path} is not valid YAML: {e}", entity=str(path)) from e


def parse_cabinets_yaml(path: Union[str, Path]) -> list[CabinetGroupDetail]:
    """cabinets.yaml: `cabinets:` is a list of groups, each with type and its own `cabinets:` list."""
    path = Path(path)
    raw = _read_yaml(path) or {}
    if not isinstance(raw, dict):
        raise InputError(f"{path} must hold a mapping with a cabinets list", entity=str(path))
    groups: list[CabinetGroupDetail] = []
    for entry in raw.get("cabinets") or []:
        try:
            groups.append(CabinetGroupDetail.model_validate(entry))
        except ValidationError as e:
            raise InputError(f"Invalid cabinet group in {path}: {e.errors()[0].get('msg')}", entity=str(path)) from e
    return groups


def parse_hmn_connections(path: Union[str, Path]) -> list[CablingRow]:
    path = Path(path)
    if not path.exists():
        raise InputError(f"Seed file not found: {path}", entity=str(path))
    with open(path) as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise InputError(f"{path} is not valid JSON: {e}", entity=str(path)) from e
    if not isinstance(raw, list):
        raise InputError(f"{path} must hold a list of cabling rows", entity=str(path))
    rows: list[CablingRow] = []
    for index, entry in enumerate(raw):
        try:
            rows.append(CablingRow.model_validate(entry))
        except ValidationError as e:
            raise InputError(f"Invalid cabling row {index} in {path}", entity=str(index)) from e
    return rows


def parse_application_node_config(path: Union[str, Path]) -> ApplicationNodeConfig:
    path = Path(path)
    raw = _read_yaml(path) or {}
    if not isinstance(raw, dict):
        raise InputError(f"{path} must hold a mapping", entity=str(path))
    try:
        return ApplicationNodeConfig(
            prefixes=raw.get("prefixes") or [],
            prefix_hsm_subroles=raw.get("prefix_hsm_subroles") or {},
            aliases=raw.get("aliases") or {},
        )
    except ValidationError as e:
        raise InputError(f"Invalid application node config in {path}: {e.errors()[0].get('msg')}",
                         entity=str(path)) from e
