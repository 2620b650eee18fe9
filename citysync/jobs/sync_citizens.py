"""
Citizen and vehicle sync job.

Fetches citizens from an organization's ESX or QBCore server, normalizes and
upserts them in batches, then fetches and upserts every synced citizen's
vehicles. Only failures of the citizen phase end the run; vehicle and
record-level failures are counted in the returned statistics.
"""

import logging
import time
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor, wait

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func, select

from ..adapters.gameserver import GameServerClient, GameServerConfig
from ..adapters.payloads import natural_key
from ..common.cache import ViewCache, view_cache
from ..common.errors import ConfigurationError, OrganizationNotFoundError
from ..config.loader import cfg
from ..db.batch import SYNC_BATCH_SIZE, run_batches
from ..db.deps import get_session, get_session_no_commit
from ..db.models import SYNC_SYSTEMS, Citizen, Organization
from ..db.sync_state import mark_sync_error, mark_sync_running, mark_sync_success
from ..db.upserts import upsert_citizen, upsert_vehicle
from ..observability import record_sync_result, record_sync_start
from ..schemas import EntityStats, SyncConfig, SyncStats, SyncStatusResult, SystemEndpoint
from ..utils.time_windows import ensure_utc, utc_now
from .normalize import transform_esx_citizen, transform_qbcore_citizen, transform_vehicle

logger = logging.getLogger(__name__)

CITIZEN_TRANSFORMS: dict[str, Callable[[dict, str], dict]] = {
    "esx": transform_esx_citizen,
    "qbcore": transform_qbcore_citizen,
}

CITIZEN_KEY_FIELDS = ("citizenid", "identifier")


class SyncSettings(BaseModel):
    """Tuning knobs for one sync run."""

    batch_size: int = Field(default=SYNC_BATCH_SIZE, ge=1)
    max_workers: int = Field(default=8, ge=1)
    run_timeout_seconds: float = Field(default=600, gt=0)
    http_timeout_seconds: float = Field(default=30, gt=0)
    http_max_attempts: int = Field(default=1, ge=1)

    @classmethod
    def from_config(cls) -> "SyncSettings":
        """
        Load settings from the sync section of the app config.

        Raises:
            ConfigurationError: If a sync setting is out of range
        """
        try:
            return cls(
                batch_size=cfg("sync.batch_size", SYNC_BATCH_SIZE),
                max_workers=cfg("sync.max_workers", 8),
                run_timeout_seconds=cfg("sync.run_timeout_seconds", 600),
                http_timeout_seconds=cfg("sync.http.timeout_seconds", 30),
                http_max_attempts=cfg("sync.http.max_attempts", 1),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid sync settings: {e}") from e


def normalize_citizens(
    raw_citizens: list[dict], system: str, organization_id: str
) -> tuple[list[dict], int]:
    """
    Transform raw citizens, isolating records that fail validation.

    Returns:
        Tuple of (canonical rows, number of records that failed)
    """
    transform = CITIZEN_TRANSFORMS[system]
    rows: list[dict] = []
    errors = 0

    for raw in raw_citizens:
        try:
            rows.append(transform(raw, organization_id))
        except Exception as e:
            errors += 1
            logger.error(f"Error processing citizen {natural_key(raw, *CITIZEN_KEY_FIELDS)}: {e}")

    return rows, errors


def sync_citizen_vehicles(
    client: GameServerClient,
    citizen_id: str,
    organization_id: str,
    settings: SyncSettings,
    upsert_pool: Executor,
    deadline: float | None = None,
) -> SyncStats:
    """
    Fetch and upsert the vehicles of one citizen.

    A failed fetch counts as a single error for this citizen and does not
    raise, so sibling citizens keep syncing.
    """
    try:
        raw_vehicles = client.fetch_vehicles(citizen_id)
    except Exception as e:
        logger.error(
            f"Error syncing vehicles for citizen {citizen_id}: {e}",
            extra={"citizen_id": citizen_id},
        )
        return SyncStats(errors=1)

    if not raw_vehicles:
        logger.info(f"No vehicles found for citizen {citizen_id}")
        return SyncStats()

    rows: list[dict] = []
    transform_errors = 0
    for raw in raw_vehicles:
        try:
            rows.append(transform_vehicle(raw, citizen_id, organization_id))
        except Exception as e:
            transform_errors += 1
            logger.error(f"Error processing vehicle {natural_key(raw, 'plate')}: {e}")

    stats, _ = run_batches(
        rows,
        upsert_vehicle,
        "plate",
        batch_size=settings.batch_size,
        executor=upsert_pool,
        deadline=deadline,
        label="vehicle",
    )
    stats.errors += transform_errors

    logger.info(
        f"Processed {len(raw_vehicles)} vehicles for citizen {citizen_id}: "
        f"created={stats.created}, updated={stats.updated}, errors={stats.errors}"
    )
    return stats


def sync_vehicles(
    client: GameServerClient,
    citizen_ids: list[str],
    organization_id: str,
    settings: SyncSettings,
    fetch_pool: Executor,
    upsert_pool: Executor,
    deadline: float | None = None,
) -> SyncStats:
    """Sync vehicles for every citizen concurrently and sum the results."""
    futures = {
        fetch_pool.submit(
            sync_citizen_vehicles,
            client,
            citizen_id,
            organization_id,
            settings,
            upsert_pool,
            deadline,
        ): citizen_id
        for citizen_id in citizen_ids
    }
    if not futures:
        return SyncStats()

    timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
    done, not_done = wait(futures, timeout=timeout)

    total = SyncStats()
    for future in done:
        if future.exception() is not None:
            logger.error(f"Vehicle sync for citizen {futures[future]} failed: {future.exception()}")
            total.errors += 1
        else:
            total = total + future.result()

    if not_done:
        logger.warning(f"Sync deadline reached with {len(not_done)} citizens' vehicles pending")
        for future in not_done:
            future.cancel()
        total.errors += len(not_done)

    return total


def sync_citizens(
    config: SyncConfig,
    client: GameServerClient | None = None,
    settings: SyncSettings | None = None,
    cache: ViewCache | None = None,
) -> SyncStatusResult:
    """
    Run a full citizen and vehicle sync for one organization.

    Args:
        config: Organization sync configuration
        client: Game server client; built from config when None
        settings: Batch, concurrency and timeout settings
        cache: Listing cache to invalidate after a successful run

    When the run deadline passes, queued upserts and vehicle fetches are
    cancelled. Work already running cannot be interrupted: the run waits for
    it before returning, so its writes land before the cache is invalidated
    and before the caller records the outcome. Its records still count as
    errors because their outcome was unknown at the deadline.

    Returns:
        SyncStatusResult with per-entity stats, or status "error" with the
        message of the failure that ended the citizen phase
    """
    settings = settings or SyncSettings.from_config()
    cache = cache if cache is not None else view_cache
    organization_id = config.organization_id
    deadline = time.monotonic() + settings.run_timeout_seconds

    logger.info(f"Starting {config.system} sync for organization {organization_id}")

    fetch_pool = ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="sync-fetch")
    upsert_pool = ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="sync-upsert")
    own_client = client is None

    try:
        if config.system not in CITIZEN_TRANSFORMS:
            raise ConfigurationError(f"Unsupported sync system: {config.system!r}")

        if own_client:
            if not config.base_url:
                raise ConfigurationError(f"{config.system.upper()} base URL not configured")
            client = GameServerClient(
                GameServerConfig(
                    base_url=config.base_url,
                    timeout_seconds=settings.http_timeout_seconds,
                    max_attempts=settings.http_max_attempts,
                )
            )

        raw_citizens = client.fetch_citizens(config.system)
        rows, normalize_errors = normalize_citizens(raw_citizens, config.system, organization_id)

        citizen_stats, synced_ids = run_batches(
            rows,
            upsert_citizen,
            "citizen_id",
            batch_size=settings.batch_size,
            executor=upsert_pool,
            deadline=deadline,
            label="citizen",
        )
        citizen_stats.errors += normalize_errors

        # Vehicles reference citizens, so only citizens that were written get a vehicle pass
        citizen_ids = list(dict.fromkeys(synced_ids))
        vehicle_stats = sync_vehicles(
            client,
            citizen_ids,
            organization_id,
            settings,
            fetch_pool,
            upsert_pool,
            deadline,
        )
    except Exception as e:
        logger.error(f"Sync error for organization {organization_id}: {e}", exc_info=True)
        return SyncStatusResult(status="error", error=str(e) or e.__class__.__name__)
    finally:
        # Fetch workers submit to the upsert pool, so drain them first
        fetch_pool.shutdown(wait=True, cancel_futures=True)
        upsert_pool.shutdown(wait=True, cancel_futures=True)
        if own_client and client is not None:
            client.close()

    logger.info(
        "Sync completed",
        extra={
            "organization_id": organization_id,
            "citizens": citizen_stats.model_dump(),
            "vehicles": vehicle_stats.model_dump(),
        },
    )

    # Cached citizen and vehicle listings are stale after a sync
    cache.invalidate(organization_id, "citizens")
    cache.invalidate(organization_id, "vehicles")

    return SyncStatusResult(
        status="idle",
        last_sync_at=utc_now(),
        stats=EntityStats(citizens=citizen_stats, vehicles=vehicle_stats),
    )


def get_sync_status(organization_id: str) -> SyncStatusResult:
    """Report when the organization's citizens were last synced."""
    try:
        with get_session_no_commit() as session:
            last_synced_at = session.scalar(
                select(func.max(Citizen.last_synced_at)).where(
                    Citizen.organization_id == organization_id
                )
            )
        return SyncStatusResult(status="idle", last_sync_at=ensure_utc(last_synced_at))
    except Exception as e:
        logger.error(f"Failed to read sync status for {organization_id}: {e}")
        return SyncStatusResult(status="error", error=str(e) or "Unknown error occurred")


def build_sync_config(organization: Organization) -> SyncConfig:
    """
    Build the sync configuration from an organization's persisted settings.

    Raises:
        ConfigurationError: If no API URL is set or the system is unknown
    """
    if not organization.api_url:
        raise ConfigurationError("API URL not configured")

    system = organization.sync_system
    if system not in SYNC_SYSTEMS:
        raise ConfigurationError(f"Unsupported sync system: {system!r}")

    return SyncConfig(
        system=system,
        organization_id=organization.id,
        sync_interval=organization.sync_interval,
        **{system: SystemEndpoint(base_url=organization.api_url)},
    )


def load_sync_config(organization_id: str) -> SyncConfig:
    """Load an organization and build its sync configuration."""
    with get_session_no_commit() as session:
        organization = session.get(Organization, organization_id)
        if organization is None:
            raise OrganizationNotFoundError(f"Organization {organization_id} not found")
        return build_sync_config(organization)


def run_organization_sync(
    organization_id: str,
    client: GameServerClient | None = None,
    settings: SyncSettings | None = None,
) -> SyncStatusResult:
    """
    Sync one organization and persist the outcome.

    Updates the organization's last_sync_at on success, the sync_state
    record on every run, and the sync metrics.

    Raises:
        OrganizationNotFoundError: If the organization does not exist
        ConfigurationError: If the organization or the sync section of the
            app config has no usable sync settings
    """
    config = load_sync_config(organization_id)
    # Resolved before the run is marked so a bad setting never strands it as running
    settings = settings or SyncSettings.from_config()

    start_time = record_sync_start()
    mark_sync_running(organization_id)

    result = sync_citizens(config, client=client, settings=settings)

    record_sync_result(start_time, result)

    if result.status == "idle":
        with get_session() as session:
            organization = session.get(Organization, organization_id)
            if organization is not None:
                organization.last_sync_at = result.last_sync_at
        mark_sync_success(
            organization_id,
            last_synced_at=result.last_sync_at,
            sync_metadata=result.stats.model_dump() if result.stats else None,
        )
    else:
        mark_sync_error(organization_id, result.error or "Unknown error occurred")

    return result
