"""Cluster Topology Compiler API."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import config_from_dict
from errors import CompileError
from models import ApplicationNodeConfig, CabinetGroupDetail, CablingRow, LogicalNCN, ManagementSwitch
from network_templates import default_networks
from pipeline import SiteInputs, compile_site

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="Cluster Topology Compiler",
    description="Compiles cabinets, switches and cabling into an address plan and hardware topology",
    version=VERSION,
)


class CompileRequest(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)     # system_config.yaml keys
    switches: list[ManagementSwitch] = Field(default_factory=list)
    ncns: list[LogicalNCN] = Field(default_factory=list)
    cabling: list[CablingRow] = Field(default_factory=list)
    cabinet_groups: list[CabinetGroupDetail] = Field(default_factory=list)
    application_config: Optional[ApplicationNodeConfig] = None


@app.post("/api/compile")
async def compile_topology(request: CompileRequest):
    try:
        inputs = SiteInputs(
            config=config_from_dict(request.config),
            switches=request.switches,
            ncns=request.ncns,
            cabling=request.cabling,
            cabinet_groups=request.cabinet_groups,
            application_config=request.application_config or ApplicationNodeConfig(),
        )
        result = compile_site(inputs)
    except CompileError as e:
        logger.error("Compile failed (%s): %s", e.kind, e)
        raise HTTPException(422, e.as_dict())
    return {"sls": result.sls_document(), "ncns": result.ncn_document()}


@app.get("/api/defaults/networks")
async def list_default_networks():
    return {name: network.to_record() for name, network in sorted(default_networks().items())}


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}
