"""Pydantic schemas for the storekeeper local API."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")
    store_reachable: bool = Field(..., description="True when a trivial query against the store succeeds.")
    store_name: str = Field("", description="Name of the active store.")


class VersionResponse(BaseModel):
    """Database server version as reported (or overridden) and parsed."""

    version: str = Field("", description="Raw version string; empty when unknown.")
    known: bool = False
    major: int = -1
    minor: int = -1
    point: int = -1
    comparison: Optional[int] = Field(
        None,
        description="Sign of server version minus the requested one, when a comparison was requested.",
    )


class BackupStatusResponse(BaseModel):
    in_progress: bool
    last_start: Optional[str] = None
    last_end: Optional[str] = None


class BackupResponse(BaseModel):
    status: str = Field(..., description="completed, failed, disabled or empty_store.")
    ok: bool
    artifact: str = Field("", description="Backup file path; empty when unknown, __FAILED__ on failure.")
    degraded: bool = Field(False, description="True when the dump could not be compressed.")
    stage: str


class TablesResponse(BaseModel):
    tables: List[str] = Field(default_factory=list)
    count: int = 0
    empty_store: bool = False


class CheckTablesRequest(BaseModel):
    repair: bool = False
    options: Optional[str] = Field(None, description="CHECK TABLE options, e.g. QUICK or EXTENDED.")


class RepairTablesRequest(BaseModel):
    tables: List[str] = Field(..., min_length=1)


class TableMaintenanceResponse(BaseModel):
    ok: bool
    action: str
    tables: List[str] = Field(default_factory=list)
