"""
Compiler configuration — one immutable record per compile run.

Loaded from the system_config.yaml seed file. Keys are kebab-case, the same
spelling the site seed files use (nmn-cidr, can-static-pool, ...). Values
not given fall back to the defaults of a small single-cabinet system.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import ipam
from errors import InputError
from models import CabinetGroupDetail, CabinetKind

logger = logging.getLogger(__name__)

USER_NETWORK_NAMES = ("", "CAN", "CHN", "HSN")


class NetworkOverride(BaseModel):
    """Per-network override, wins over the flat <net>-* keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    cidr: Optional[str] = None
    bootstrap_vlan: Optional[int] = Field(None, alias="bootstrap-vlan")
    full_name: Optional[str] = Field(None, alias="full-name")
    mtu: Optional[int] = None


class CompilerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    system_name: str = Field("sn-2024", alias="system-name")
    bican_user_network_name: str = Field("", alias="bican-user-network-name")
    retain_unused_user_network: bool = Field(False, alias="retain-unused-user-network")
    supernet: bool = True                # Switch-facing subnets use the whole network's mask

    # --- BGP ---
    bgp_asn: int = Field(65533, alias="bgp-asn")
    bgp_cmn_asn: int = Field(65532, alias="bgp-cmn-asn")
    bgp_nmn_asn: int = Field(65531, alias="bgp-nmn-asn")
    bgp_chn_asn: int = Field(65530, alias="bgp-chn-asn")

    # --- Network CIDRs ---
    nmn_cidr: str = Field("10.252.0.0/17", alias="nmn-cidr")
    nmn_mtn_cidr: str = Field("10.100.0.0/17", alias="nmn-mtn-cidr")
    nmn_rvr_cidr: str = Field("10.106.0.0/17", alias="nmn-rvr-cidr")
    hmn_cidr: str = Field("10.254.0.0/17", alias="hmn-cidr")
    hmn_mtn_cidr: str = Field("10.104.0.0/17", alias="hmn-mtn-cidr")
    hmn_rvr_cidr: str = Field("10.107.0.0/17", alias="hmn-rvr-cidr")
    cmn_cidr: str = Field("10.103.6.0/24", alias="cmn-cidr")
    can_cidr: str = Field("", alias="can-cidr")
    chn_cidr: str = Field("", alias="chn-cidr")
    mtl_cidr: str = Field("10.1.1.0/16", alias="mtl-cidr")
    hsn_cidr: str = Field("10.253.0.0/16", alias="hsn-cidr")

    # --- User network gateways and load balancer pools ---
    cmn_gateway: str = Field("", alias="cmn-gateway")
    can_gateway: str = Field("", alias="can-gateway")
    chn_gateway: str = Field("", alias="chn-gateway")
    cmn_static_pool: str = Field("", alias="cmn-static-pool")
    cmn_dynamic_pool: str = Field("", alias="cmn-dynamic-pool")
    cmn_external_dns: str = Field("", alias="cmn-external-dns")
    can_static_pool: str = Field("", alias="can-static-pool")
    can_dynamic_pool: str = Field("", alias="can-dynamic-pool")
    chn_static_pool: str = Field("", alias="chn-static-pool")
    chn_dynamic_pool: str = Field("", alias="chn-dynamic-pool")

    # --- Bootstrap VLANs ---
    nmn_bootstrap_vlan: int = Field(2, alias="nmn-bootstrap-vlan")
    hmn_bootstrap_vlan: int = Field(4, alias="hmn-bootstrap-vlan")
    chn_bootstrap_vlan: int = Field(5, alias="chn-bootstrap-vlan")
    can_bootstrap_vlan: int = Field(6, alias="can-bootstrap-vlan")
    cmn_bootstrap_vlan: int = Field(7, alias="cmn-bootstrap-vlan")

    # --- Cabinets and NIDs ---
    mountain_cabinets: int = Field(4, alias="mountain-cabinets")
    starting_mountain_cabinet: int = Field(1000, alias="starting-mountain-cabinet")
    river_cabinets: int = Field(1, alias="river-cabinets")
    starting_river_cabinet: int = Field(3000, alias="starting-river-cabinet")
    hill_cabinets: int = Field(0, alias="hill-cabinets")
    starting_hill_cabinet: int = Field(9000, alias="starting-hill-cabinet")
    starting_mountain_nid: int = Field(1000, alias="starting-mountain-nid")

    network_overrides: dict[str, NetworkOverride] = Field(default_factory=dict, alias="network-overrides")

    @field_validator(
        "nmn_cidr", "nmn_mtn_cidr", "nmn_rvr_cidr", "hmn_cidr", "hmn_mtn_cidr", "hmn_rvr_cidr",
        "cmn_cidr", "can_cidr", "chn_cidr", "mtl_cidr", "hsn_cidr",
        "cmn_static_pool", "cmn_dynamic_pool", "can_static_pool", "can_dynamic_pool",
        "chn_static_pool", "chn_dynamic_pool",
    )
    @classmethod
    def _check_cidr(cls, v: str) -> str:
        if v:
            try:
                ipam.parse_network(v)
            except InputError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator("cmn_gateway", "can_gateway", "chn_gateway", "cmn_external_dns")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if v:
            try:
                ipam.parse_address(v)
            except InputError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator("bican_user_network_name")
    @classmethod
    def _check_user_network(cls, v: str) -> str:
        if v not in USER_NETWORK_NAMES:
            raise ValueError(f"must be one of CAN, CHN, HSN (got {v!r})")
        return v

    # --- Per-network lookups ---

    def _by_alias(self, key: str) -> Any:
        for name, field in type(self).model_fields.items():
            if field.alias == key:
                return getattr(self, name)
        return None

    @staticmethod
    def _key(network_name: str) -> str:
        return network_name.lower().replace("_", "-")

    def cidr_for(self, network_name: str) -> str:
        override = self.network_overrides.get(network_name)
        if override and override.cidr:
            return override.cidr
        return self._by_alias(f"{self._key(network_name)}-cidr") or ""

    def bootstrap_vlan_for(self, network_name: str) -> Optional[int]:
        override = self.network_overrides.get(network_name)
        if override and override.bootstrap_vlan is not None:
            return override.bootstrap_vlan
        return self._by_alias(f"{self._key(network_name)}-bootstrap-vlan")

    def gateway_for(self, network_name: str) -> str:
        return self._by_alias(f"{self._key(network_name)}-gateway") or ""

    def static_pool_for(self, network_name: str) -> str:
        return self._by_alias(f"{self._key(network_name)}-static-pool") or ""

    def dynamic_pool_for(self, network_name: str) -> str:
        return self._by_alias(f"{self._key(network_name)}-dynamic-pool") or ""

    def asn_for(self, network_name: str) -> Optional[int]:
        return self._by_alias(f"bgp-{self._key(network_name)}-asn")

    def builds_user_network(self, network_name: str) -> bool:
        return self.bican_user_network_name == network_name or self.retain_unused_user_network

    def cabinet_definitions(self) -> dict[CabinetKind, CabinetGroupDetail]:
        """Count/start definitions for the three classic kinds. EX kinds come only from cabinets.yaml."""
        return {
            CabinetKind.RIVER: CabinetGroupDetail(
                kind=CabinetKind.RIVER, count=self.river_cabinets, starting_id=self.starting_river_cabinet,
            ),
            CabinetKind.HILL: CabinetGroupDetail(
                kind=CabinetKind.HILL, count=self.hill_cabinets, starting_id=self.starting_hill_cabinet,
            ),
            CabinetKind.MOUNTAIN: CabinetGroupDetail(
                kind=CabinetKind.MOUNTAIN, count=self.mountain_cabinets, starting_id=self.starting_mountain_cabinet,
            ),
        }


def config_from_dict(data: Optional[dict]) -> CompilerConfig:
    try:
        return CompilerConfig.model_validate(data or {})
    except ValidationError as e:
        first = e.errors()[0]
        entity = ".".join(str(p) for p in first.get("loc", ()))
        raise InputError(f"Invalid configuration: {first.get('msg')}", entity=entity or None) from e


def load_config(path: Union[str, Path]) -> CompilerConfig:
    path = Path(path)
    if not path.exists():
        raise InputError(f"Config file not found: {path}", entity=str(path))
    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InputError(f"Config file {path} is not valid YAML: {e}", entity=str(path)) from e
    if raw is not None and not isinstance(raw, dict):
        raise InputError(f"Config file {path} must hold a mapping", entity=str(path))
    config = config_from_dict(raw)
    logger.info("Loaded config for %s from %s", config.system_name, path)
    return config
