"""Error taxonomy for the topology compiler.

Every failure aborts the compile run. Components raise one of the four
kinds below and only the drivers (main.py, scripts/compile_site.py) turn
them into an HTTP response or a non-zero exit.
"""

from __future__ import annotations

from typing import Optional


class CompileError(Exception):
    """Base exception for all compiler errors."""

    kind = "compile"

    def __init__(self, message: str, entity: Optional[str] = None) -> None:
        self.entity = entity
        super().__init__(message)

    def as_dict(self) -> dict:
        return {"error": self.kind, "entity": self.entity, "detail": str(self)}


class InputError(CompileError):
    """Missing or malformed input: bad CIDR, missing field, duplicate id."""

    kind = "input"


class CapacityError(CompileError):
    """Not enough address space or subnets for the requested population."""

    kind = "capacity"


class SemanticError(CompileError):
    """Well-formed input that describes an impossible configuration."""

    kind = "semantic"


class ConsistencyError(CompileError):
    """A reference that has no matching entry once the topology is assembled."""

    kind = "consistency"


class ReservationNotFound(SemanticError):
    """No reservation with the requested name exists in the subnet."""


class SubnetNotFound(SemanticError):
    """No subnet with the requested name exists in the network."""
