"""
HTTP API for CitySync.

Routes to trigger an organization sync, store its sync configuration, read
its sync status and list its synced citizens and vehicles, plus the health
and Prometheus endpoints of the service.
"""

import json
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import select

from .common.cache import view_cache
from .common.errors import ConfigurationError, OrganizationNotFoundError
from .config.loader import cfg
from .db.deps import get_session, get_session_no_commit
from .db.models import Citizen, Organization, Vehicle
from .db.sync_state import get_all_sync_states
from .jobs.sync_citizens import get_sync_status, run_organization_sync
from .observability import (
    REGISTRY,
    check_database_health,
    is_scheduler_running,
    update_sync_health_metrics,
)
from .schemas import SyncConfigUpdate
from .utils.time_windows import ensure_utc

logger = logging.getLogger(__name__)

SERVICE_NAME = "CitySync"
SERVICE_VERSION = "1.0.0"

_app_start_time = datetime.now(UTC)

# Called with the organization id after its sync configuration changes
_config_listeners: list[Callable[[str], None]] = []


def add_config_listener(listener: Callable[[str], None]) -> None:
    """Register a callback run after an organization's sync settings change."""
    _config_listeners.append(listener)


def _notify_config_changed(organization_id: str) -> None:
    for listener in _config_listeners:
        try:
            listener(organization_id)
        except Exception as e:
            logger.error(f"Sync config listener failed for {organization_id}: {e}")


def _health_max_age() -> timedelta:
    # A tenant is unhealthy once it misses three runs at the default interval
    interval_ms = cfg("sync.default_interval_ms", 300000)
    return timedelta(milliseconds=interval_ms * 3)


def get_health_status() -> dict[str, Any]:
    """Get comprehensive health status."""
    db_healthy = check_database_health()
    max_age = _health_max_age()
    health = update_sync_health_metrics(max_age)

    sync_states = {}
    try:
        for organization_id, state in get_all_sync_states().items():
            sync_states[organization_id] = {
                "status": state.status,
                "last_synced_at": state.last_synced_at.isoformat()
                if state.last_synced_at
                else None,
                "error_count": state.error_count,
                "healthy": health.get(organization_id, False),
            }
    except Exception as e:
        logger.error(f"Failed to get sync states: {e}")

    # Failing tenants are reported but do not make the service unhealthy
    overall_healthy = db_healthy and is_scheduler_running()

    return {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": (datetime.now(UTC) - _app_start_time).total_seconds(),
        "checks": {
            "database": "healthy" if db_healthy else "unhealthy",
            "scheduler": "running" if is_scheduler_running() else "stopped",
        },
        "sync_states": sync_states,
    }


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Serialize a model row, decoding JSON document columns."""
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, datetime):
            value = ensure_utc(value).isoformat()
        elif isinstance(value, str) and value[:1] in ("{", "["):
            try:
                value = json.loads(value)
            except ValueError:
                pass
        data[column.key] = value
    return data


def _require_organization(organization_id: str) -> None:
    with get_session_no_commit() as session:
        if session.get(Organization, organization_id) is None:
            raise HTTPException(status_code=404, detail=f"Organization {organization_id} not found")


def list_citizens(organization_id: str) -> list[dict[str, Any]]:
    """Citizens of an organization ordered by name."""
    with get_session_no_commit() as session:
        rows = session.scalars(
            select(Citizen)
            .where(Citizen.organization_id == organization_id)
            .order_by(Citizen.name, Citizen.citizen_id)
        ).all()
        return [_row_to_dict(row) for row in rows]


def list_vehicles(organization_id: str) -> list[dict[str, Any]]:
    """Vehicles of an organization ordered by plate."""
    with get_session_no_commit() as session:
        rows = session.scalars(
            select(Vehicle)
            .where(Vehicle.organization_id == organization_id)
            .order_by(Vehicle.plate)
        ).all()
        return [_row_to_dict(row) for row in rows]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager."""
    view_cache.ttl_seconds = cfg("cache.ttl_seconds", 60)
    logger.info("Starting CitySync API server")
    yield
    logger.info("Stopping CitySync API server")


app = FastAPI(
    title="CitySync",
    description="Game server citizen and vehicle sync service",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    """Report invalid request bodies as 400 Bad Request."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.post("/organizations/{organization_id}/sync")
def trigger_sync(organization_id: str):
    """Run a full sync for one organization."""
    try:
        result = run_organization_sync(organization_id)
    except OrganizationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    body = jsonable_encoder(result)
    if result.status == "error":
        return JSONResponse(status_code=500, content=body)
    return body


@app.post("/organizations/{organization_id}/sync-config")
def update_sync_config(organization_id: str, update: SyncConfigUpdate):
    """Store the API URL, interval and system used to sync an organization."""
    with get_session() as session:
        organization = session.get(Organization, organization_id)
        if organization is None:
            raise HTTPException(status_code=404, detail=f"Organization {organization_id} not found")

        organization.api_url = str(update.api_url)
        if update.sync_interval is not None:
            organization.sync_interval = update.sync_interval

        if update.sync_system is not None:
            try:
                metadata = json.loads(organization.org_metadata) if organization.org_metadata else {}
            except ValueError:
                metadata = {}
            if not isinstance(metadata, dict):
                metadata = {}
            metadata["syncSystem"] = update.sync_system
            organization.org_metadata = json.dumps(metadata)

        response = {
            "organization_id": organization.id,
            "api_url": organization.api_url,
            "sync_interval": organization.sync_interval,
            "sync_system": organization.sync_system,
        }

    logger.info(
        f"Updated sync config for organization {organization_id}",
        extra={"organization_id": organization_id, "sync_system": response["sync_system"]},
    )
    _notify_config_changed(organization_id)
    return response


@app.get("/organizations/{organization_id}/sync-status")
def sync_status(organization_id: str):
    """Report when the organization's citizens were last synced."""
    return jsonable_encoder(get_sync_status(organization_id))


@app.get("/organizations/{organization_id}/citizens")
def citizens(organization_id: str):
    _require_organization(organization_id)
    return view_cache.get_or_load(
        (organization_id, "citizens"), lambda: list_citizens(organization_id)
    )


@app.get("/organizations/{organization_id}/vehicles")
def vehicles(organization_id: str):
    _require_organization(organization_id)
    return view_cache.get_or_load(
        (organization_id, "vehicles"), lambda: list_vehicles(organization_id)
    )


@app.get("/healthz")
def health_check():
    """Health check endpoint."""
    health = get_health_status()

    if health["status"] == "healthy":
        return health
    else:
        raise HTTPException(status_code=503, detail=health)


@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    """Prometheus metrics endpoint."""
    if not cfg("observability.metrics.enabled", True):
        raise HTTPException(status_code=404, detail="Metrics disabled by configuration")

    # Update metrics before serving
    check_database_health()
    update_sync_health_metrics(_health_max_age())

    return PlainTextResponse(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
def root():
    """Root endpoint with service info."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "endpoints": [
            "/healthz",
            "/metrics",
            "/organizations/{id}/sync",
            "/organizations/{id}/sync-config",
            "/organizations/{id}/sync-status",
            "/organizations/{id}/citizens",
            "/organizations/{id}/vehicles",
        ],
    }
