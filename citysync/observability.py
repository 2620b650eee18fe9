"""
Prometheus metrics and health checks for sync runs.

Shared by the scheduler, the HTTP routes and the sync job; exposed by the
/metrics and /healthz endpoints of the FastAPI app.
"""

import logging
from datetime import timedelta

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram
from sqlalchemy import text

from .db.deps import get_session_no_commit
from .db.sync_state import get_all_sync_states, is_sync_healthy
from .schemas import SyncStatusResult
from .utils.time_windows import utc_now

logger = logging.getLogger(__name__)

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Sync metrics
sync_runs_total = Counter(
    "sync_runs_total", "Total number of organization sync runs", ["status"], registry=REGISTRY
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds", "Organization sync duration in seconds", registry=REGISTRY
)

records_upserted_total = Counter(
    "records_upserted_total",
    "Total number of records upserted",
    ["table", "operation"],
    registry=REGISTRY,
)

record_errors_total = Counter(
    "record_errors_total", "Records that failed to sync", ["table"], registry=REGISTRY
)

# System metrics
scheduler_running = Gauge(
    "scheduler_running", "Whether the scheduler is running", registry=REGISTRY
)

database_connection_healthy = Gauge(
    "database_connection_healthy", "Database connection health status", registry=REGISTRY
)

sync_health_status = Gauge(
    "sync_health_status",
    "Health status of organization syncs",
    ["organization_id"],
    registry=REGISTRY,
)

# Global state
_scheduler_running = False


def set_scheduler_running(running: bool) -> None:
    """Update scheduler running status."""
    global _scheduler_running
    _scheduler_running = running
    scheduler_running.set(1 if running else 0)


def is_scheduler_running() -> bool:
    return _scheduler_running


def check_database_health() -> bool:
    """Check database connectivity."""
    try:
        with get_session_no_commit() as session:
            session.execute(text("SELECT 1")).fetchone()
        database_connection_healthy.set(1)
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connection_healthy.set(0)
        return False


def update_sync_health_metrics(max_age: timedelta) -> dict[str, bool]:
    """Refresh the per-organization health gauge and return the health map."""
    health: dict[str, bool] = {}
    try:
        for organization_id, state in get_all_sync_states().items():
            healthy = is_sync_healthy(state, max_age)
            sync_health_status.labels(organization_id=organization_id).set(1 if healthy else 0)
            health[organization_id] = healthy
    except Exception as e:
        logger.error(f"Failed to update sync health metrics: {e}")
    return health


# Metrics helpers for use in jobs
def record_sync_start() -> float:
    """Record sync start and return start time."""
    return utc_now().timestamp()


def record_sync_result(start_time: float, result: SyncStatusResult) -> None:
    """Record the outcome and per-table counts of a finished sync."""
    duration = utc_now().timestamp() - start_time

    sync_runs_total.labels(status="success" if result.status == "idle" else "error").inc()
    sync_duration_seconds.observe(duration)

    if result.stats is None:
        return

    for table, stats in (("citizens", result.stats.citizens), ("vehicles", result.stats.vehicles)):
        if stats.created > 0:
            records_upserted_total.labels(table=table, operation="insert").inc(stats.created)
        if stats.updated > 0:
            records_upserted_total.labels(table=table, operation="update").inc(stats.updated)
        if stats.errors > 0:
            record_errors_total.labels(table=table).inc(stats.errors)
