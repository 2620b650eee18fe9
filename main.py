#!/usr/bin/env python3
"""
CitySync Service

Scheduler that periodically syncs every organization's citizens and vehicles
from its game server, with an optional HTTP API and graceful shutdown
handling.
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from citysync.config.loader import cfg, load_config, validate_config
from citysync.db.deps import get_session_no_commit
from citysync.db.models import DEFAULT_SYNC_INTERVAL_MS, Organization
from citysync.jobs.sync_citizens import run_organization_sync
from citysync.observability import set_scheduler_running
from citysync.utils.time_windows import format_duration, utc_now

MIN_SYNC_INTERVAL_MS = 60000


# Configure structured logging
def setup_logging():
    """Setup structured logging based on configuration."""
    log_level = cfg("global.log_level", "INFO")
    log_format = cfg("global.log_format", "json")

    if log_format == "json":
        import structlog

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format="%(message)s",
            handlers=[logging.StreamHandler(sys.stdout)]
        )
    else:
        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[BackgroundScheduler] = None


def create_sync_runner(organization_id: str) -> Callable:
    """
    Create a job runner that syncs one organization.

    Args:
        organization_id: Organization to sync

    Returns:
        Callable job runner function
    """

    def run_sync():
        """Execute the sync with full observability."""
        start = utc_now()
        logger.info(f"Starting sync for organization {organization_id}")

        try:
            result = run_organization_sync(organization_id)
        except Exception as e:
            duration = utc_now() - start
            logger.error(
                f"Sync for organization {organization_id} failed: {e}",
                extra={
                    "organization_id": organization_id,
                    "duration": format_duration(duration),
                    "error": str(e)
                },
                exc_info=True
            )
            # Don't re-raise - we want the scheduler to continue
            return

        duration = utc_now() - start
        stats = result.stats.model_dump() if result.stats else None
        if result.status == "idle":
            logger.info(
                f"Sync for organization {organization_id} completed successfully",
                extra={
                    "organization_id": organization_id,
                    "duration": format_duration(duration),
                    "stats": stats
                }
            )
        else:
            logger.error(
                f"Sync for organization {organization_id} failed: {result.error}",
                extra={
                    "organization_id": organization_id,
                    "duration": format_duration(duration),
                    "error": result.error
                }
            )

    return run_sync


def setup_job_scheduler() -> BackgroundScheduler:
    """Setup and configure the job scheduler."""
    timezone_str = cfg("global.timezone", "UTC")

    scheduler_config = {
        "timezone": timezone_str,
        "job_defaults": cfg("scheduler.job_defaults", {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300
        })
    }

    scheduler = BackgroundScheduler(**scheduler_config)

    # Job execution event handlers
    def job_listener(event: JobExecutionEvent):
        """Handle job execution events."""
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {event.exception}")
        else:
            logger.info(f"Job {event.job_id} completed")

    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    return scheduler


def schedule_organization(scheduler: BackgroundScheduler, organization: Organization) -> bool:
    """
    Add or replace the interval job of one organization.

    Organizations without an API URL are unscheduled.

    Returns:
        True if a job is scheduled for the organization
    """
    job_id = f"sync_{organization.id}"

    if not organization.api_url:
        if scheduler.get_job(job_id):
            scheduler.remove_job(job_id)
        logger.info(f"Organization {organization.id} has no API URL, not scheduled")
        return False

    interval_ms = organization.sync_interval or cfg("sync.default_interval_ms", DEFAULT_SYNC_INTERVAL_MS)
    interval_ms = max(interval_ms, MIN_SYNC_INTERVAL_MS)

    scheduler.add_job(
        func=create_sync_runner(organization.id),
        trigger=IntervalTrigger(seconds=interval_ms / 1000, timezone=cfg("global.timezone", "UTC")),
        id=job_id,
        name=f"Sync {organization.name}",
        replace_existing=True
    )

    logger.info(f"Registered job: {job_id} every {interval_ms} ms")
    return True


def register_jobs(scheduler: BackgroundScheduler) -> int:
    """
    Register an interval job for every organization with an API URL.

    Args:
        scheduler: APScheduler instance

    Returns:
        Number of jobs registered
    """
    jobs_registered = 0

    with get_session_no_commit() as session:
        organizations = session.scalars(select(Organization)).all()

    for organization in organizations:
        try:
            if schedule_organization(scheduler, organization):
                jobs_registered += 1
        except Exception as e:
            logger.error(f"Failed to register sync job for {organization.id}: {e}")

    return jobs_registered


def reschedule_organization(organization_id: str) -> None:
    """Pick up changed sync settings of one organization."""
    if scheduler is None:
        return

    with get_session_no_commit() as session:
        organization = session.get(Organization, organization_id)

    if organization is not None:
        schedule_organization(scheduler, organization)


def run_single_sync(organization_id: str) -> int:
    """
    Sync one organization once and exit.

    Args:
        organization_id: Organization to sync

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        logger.info(f"Running single sync: {organization_id}")
        result = run_organization_sync(organization_id)
    except Exception as e:
        logger.error(f"Single sync {organization_id} failed: {e}", exc_info=True)
        return 1

    if result.status == "error":
        logger.error(f"Single sync {organization_id} failed: {result.error}")
        return 1

    logger.info(
        f"Single sync {organization_id} completed successfully",
        extra={"stats": result.stats.model_dump() if result.stats else None}
    )
    return 0


def start_api_server() -> None:
    """Serve the HTTP API with uvicorn in the foreground."""
    import uvicorn

    from citysync.server import add_config_listener, app

    add_config_listener(reschedule_organization)

    port = cfg("observability.metrics.port", 8000)
    logger.info(f"Starting API server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_config=None)


def shutdown_scheduler() -> None:
    global scheduler

    if scheduler and scheduler.running:
        logger.info("Shutting down scheduler...")
        set_scheduler_running(False)
        scheduler.shutdown(wait=True)
        logger.info("Scheduler shut down complete")


def handle_shutdown(signum, frame):
    """Handle graceful shutdown signals."""
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_scheduler()
    logger.info("Graceful shutdown complete")
    sys.exit(0)


def main():
    """Main entrypoint for the CitySync service."""
    global scheduler

    # Parse command line arguments
    parser = argparse.ArgumentParser(description="CitySync Service")
    parser.add_argument("--run", metavar="ORG_ID", help="Sync a single organization once and exit")
    parser.add_argument("--config", default=None, help="Configuration file path")
    parser.add_argument("--validate-config", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--serve", action="store_true", help="Serve the HTTP API alongside the scheduler")

    args = parser.parse_args()

    try:
        # Load configuration before logging reads it
        load_config(args.config)
    except FileNotFoundError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

    setup_logging()
    logger.info("Starting CitySync Service")

    try:
        if args.validate_config:
            validate_config()
            logger.info("Configuration is valid")
            return 0

        validate_config()
        logger.info("Configuration validated successfully")

        # Handle single sync execution
        if args.run:
            return run_single_sync(args.run)

        # Setup scheduler
        scheduler = setup_job_scheduler()

        jobs_count = register_jobs(scheduler)
        if jobs_count == 0 and not args.serve:
            logger.warning("No organizations with an API URL. Nothing to schedule.")
            return 1

        logger.info(f"Registered {jobs_count} jobs")

        set_scheduler_running(True)
        scheduler.start()
        started_at = datetime.now(timezone.utc)

        if args.serve:
            # uvicorn handles SIGINT/SIGTERM itself and returns on shutdown
            start_api_server()
            shutdown_scheduler()
            return 0

        # Setup signal handlers for graceful shutdown
        signal.signal(signal.SIGTERM, handle_shutdown)
        signal.signal(signal.SIGINT, handle_shutdown)

        logger.info(f"Scheduler started at {started_at.isoformat()}. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            handle_shutdown(signal.SIGINT, None)

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    exit(main())
