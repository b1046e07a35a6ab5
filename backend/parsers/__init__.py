"""Parsers for site seed files."""

from .csv_metadata import parse_ncn_metadata, parse_switch_metadata
from .seed_files import parse_application_node_config, parse_cabinets_yaml, parse_hmn_connections

__all__ = [
    "parse_ncn_metadata",
    "parse_switch_metadata",
    "parse_application_node_config",
    "parse_cabinets_yaml",
    "parse_hmn_connections",
]
