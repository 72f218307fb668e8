"""FastAPI application exposing store maintenance over a local REST interface."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backup.schedule import format_timestamp
from coordinator import StoreCoordinator
from core.versioning import UNKNOWN_VERSION, parse_version
from db_maint import normalize_check_options

from .auth import APIKeyAuth
from .models import (
    BackupResponse,
    BackupStatusResponse,
    CheckTablesRequest,
    HealthResponse,
    RepairTablesRequest,
    TableMaintenanceResponse,
    TablesResponse,
    VersionResponse,
)

LOGGER = logging.getLogger("storekeeper.api")


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    coordinator: StoreCoordinator
    api_key: Optional[str]
    cors_origins: Sequence[str]
    app_version: str = "dev"
    lan_only: bool = True


_LOCAL_CLIENT_SENTINELS = {
    "127.0.0.1",
    "::1",
    "localhost",
    "testclient",
}


def _normalise_remote_host(host: Optional[str]) -> Optional[str]:
    if host is None:
        return None
    value = host.strip().lower()
    if not value:
        return None
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    if "%" in value:  # IPv6 scope id
        value = value.split("%", 1)[0]
    if value.startswith("::ffff:"):
        value = value[len("::ffff:"):]
    return value


def _is_loopback_host(host: Optional[str]) -> bool:
    value = _normalise_remote_host(host)
    if value is None:
        return True
    return value in _LOCAL_CLIENT_SENTINELS or value.startswith("127.")


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="Storekeeper Local API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    auth_dependency = APIKeyAuth(config.api_key)
    services = config.coordinator
    lan_only = bool(config.lan_only)
    # Backups and repairs from this process never overlap.
    maintenance_lock = threading.Lock()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        services.close()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        client_host = request.client.host if request.client else None
        try:
            if lan_only and not _is_loopback_host(client_host):
                LOGGER.warning("Rejected non-local HTTP request from %s", client_host or "<unknown>")
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "LAN access disabled"})
            else:
                response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client_host or "-",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": exc.errors()},
        )

    def _exclusive() -> None:
        if not maintenance_lock.acquire(blocking=False):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Another maintenance task is running.")

    @app.get("/v1/health", response_model=HealthResponse)
    def health_check(_: str = Depends(auth_dependency)) -> HealthResponse:
        return HealthResponse(
            ok=True,
            version=config.app_version,
            time_utc=_utc_now(),
            store_reachable=services.store.is_connected(),
            store_name=services.store.params.name,
        )

    @app.get("/v1/dbms/version", response_model=VersionResponse)
    def dbms_version(
        compare: Optional[str] = Query(None, max_length=64, description="Version to compare against, e.g. 5.0.22"),
        _: str = Depends(auth_dependency),
    ) -> VersionResponse:
        comparison: Optional[int] = None
        if compare is not None:
            wanted = parse_version(compare)
            if not wanted.known:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="compare must contain a version number")
            result = services.version_probe.compare(*(max(part, 0) for part in wanted.as_tuple()))
            comparison = None if result == UNKNOWN_VERSION else (result > 0) - (result < 0)
        current = services.version_probe.version()
        return VersionResponse(
            version=current.raw,
            known=current.known,
            major=current.major,
            minor=current.minor,
            point=current.point,
            comparison=comparison,
        )

    @app.get("/v1/backup/status", response_model=BackupStatusResponse)
    def backup_status(_: str = Depends(auth_dependency)) -> BackupStatusResponse:
        schedule = services.backups.schedule
        start = schedule.last_start()
        end = schedule.last_end()
        return BackupStatusResponse(
            in_progress=services.backups.is_backup_in_progress(),
            last_start=format_timestamp(start) if start else None,
            last_end=format_timestamp(end) if end else None,
        )

    @app.post("/v1/backup", response_model=BackupResponse)
    def run_backup(_: str = Depends(auth_dependency)) -> BackupResponse:
        if services.backups.is_backup_in_progress():
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A backup appears to be in progress.")
        _exclusive()
        try:
            outcome = services.backups.backup_database()
        finally:
            maintenance_lock.release()
        return BackupResponse(
            status=outcome.status.value,
            ok=outcome.ok,
            artifact=outcome.artifact,
            degraded=outcome.degraded,
            stage=outcome.stage.value,
        )

    @app.get("/v1/tables", response_model=TablesResponse)
    def tables(
        engine: Optional[List[str]] = Query(None, description="Restrict to these storage engines (repeatable)."),
        _: str = Depends(auth_dependency),
    ) -> TablesResponse:
        names = services.auditor.list_tables(engine or None)
        return TablesResponse(tables=names, count=len(names), empty_store=services.auditor.is_empty_store())

    @app.post("/v1/tables/check", response_model=TableMaintenanceResponse)
    def check_tables(payload: CheckTablesRequest, _: str = Depends(auth_dependency)) -> TableMaintenanceResponse:
        options = payload.options if payload.options is not None else services.check_options
        try:
            normalize_check_options(options)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        _exclusive()
        try:
            bad = services.auditor.find_bad_tables(options)
            if bad is None:
                raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Unable to check tables.")
            ok = not bad
            if bad and payload.repair:
                ok = services.auditor.repair_tables(bad)
        finally:
            maintenance_lock.release()
        return TableMaintenanceResponse(ok=ok, action="check+repair" if payload.repair else "check", tables=bad)

    @app.post("/v1/tables/repair", response_model=TableMaintenanceResponse)
    def repair_tables(payload: RepairTablesRequest, _: str = Depends(auth_dependency)) -> TableMaintenanceResponse:
        _exclusive()
        try:
            ok = services.auditor.repair_tables(payload.tables)
        finally:
            maintenance_lock.release()
        return TableMaintenanceResponse(ok=ok, action="repair", tables=list(payload.tables))

    return app


__all__ = [
    "APIServerConfig",
    "create_app",
]
