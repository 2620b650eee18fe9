"""
Sync state management for organization syncs.

Records the outcome of the last run per organization so the status route,
the health check and the scheduler can tell healthy tenants from failing
ones.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Session

from ..utils.time_windows import ensure_utc, utc_now
from .deps import get_session
from .models import Base
from .upserts import dialect_insert

logger = logging.getLogger(__name__)


class SyncState(Base):
    """
    Sync state tracking per organization.

    Stores the last run's status, timestamp and statistics.
    """

    __tablename__ = "sync_state"

    organization_id = Column(String, primary_key=True)
    last_synced_at = Column(DateTime(timezone=True))  # UTC timestamp of last run
    status = Column(String, default="success")  # success, running, error
    error_count = Column(Integer, default=0)  # Consecutive error count
    error_message = Column(Text)  # Last error message
    sync_metadata = Column(Text)  # JSON metadata (sync stats, etc.)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Indexes
    __table_args__ = (
        Index("ix_sync_state_last_synced_at", "last_synced_at"),
        Index("ix_sync_state_status", "status"),
    )


def update_sync_state(
    organization_id: str,
    last_synced_at: datetime,
    status: str = "success",
    error_message: str | None = None,
    sync_metadata: dict[str, Any] | None = None,
    session: Session | None = None,
) -> None:
    """
    Update sync state for an organization.

    Args:
        organization_id: Organization the run belongs to
        last_synced_at: Timestamp of the run (UTC)
        status: Sync status (success, running, error)
        error_message: Error message if status is error
        sync_metadata: Additional metadata (will be JSON serialized)
        session: Optional database session
    """
    last_synced_at = ensure_utc(last_synced_at)
    metadata_json = json.dumps(sync_metadata, default=str) if sync_metadata else None

    def _update(sess: Session) -> None:
        insert = dialect_insert(sess)
        stmt = insert(SyncState).values(
            organization_id=organization_id,
            last_synced_at=last_synced_at,
            status=status,
            error_count=1 if status == "error" else 0,
            error_message=error_message,
            sync_metadata=metadata_json,
            updated_at=utc_now(),
        )

        # Keep the consecutive error count across failures, reset on success
        if status == "error":
            error_count = SyncState.error_count + 1
        elif status == "running":
            error_count = SyncState.error_count
        else:
            error_count = stmt.excluded.error_count

        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id"],
            set_={
                "last_synced_at": stmt.excluded.last_synced_at,
                "status": stmt.excluded.status,
                "error_count": error_count,
                "error_message": stmt.excluded.error_message,
                "sync_metadata": stmt.excluded.sync_metadata,
                "updated_at": stmt.excluded.updated_at,
            },
        )

        sess.execute(stmt)

        logger.debug(f"Updated sync state for {organization_id}: {status} at {last_synced_at}")

    if session:
        _update(session)
    else:
        with get_session() as sess:
            _update(sess)


def mark_sync_running(organization_id: str, session: Session | None = None) -> None:
    """Mark sync as currently running."""
    update_sync_state(
        organization_id=organization_id, last_synced_at=utc_now(), status="running", session=session
    )


def mark_sync_success(
    organization_id: str,
    last_synced_at: datetime | None = None,
    sync_metadata: dict[str, Any] | None = None,
    session: Session | None = None,
) -> None:
    """Mark sync as successful."""
    update_sync_state(
        organization_id=organization_id,
        last_synced_at=last_synced_at or utc_now(),
        status="success",
        sync_metadata=sync_metadata,
        session=session,
    )


def mark_sync_error(organization_id: str, error_message: str, session: Session | None = None) -> None:
    """Mark sync as failed with error."""
    update_sync_state(
        organization_id=organization_id,
        last_synced_at=utc_now(),
        status="error",
        error_message=error_message,
        session=session,
    )


def get_sync_state(organization_id: str, session: Session | None = None) -> SyncState | None:
    """Get full sync state for an organization."""

    def _query(sess: Session) -> SyncState | None:
        return sess.query(SyncState).filter_by(organization_id=organization_id).first()

    if session:
        return _query(session)

    with get_session() as sess:
        return _query(sess)


def get_all_sync_states(session: Session | None = None) -> dict[str, SyncState]:
    """Get all sync states keyed by organization id."""

    def _query(sess: Session) -> dict[str, SyncState]:
        states = sess.query(SyncState).all()
        return {state.organization_id: state for state in states}

    if session:
        return _query(session)

    with get_session() as sess:
        return _query(sess)


def is_sync_healthy(state: SyncState | None, max_age: timedelta) -> bool:
    """
    Check if a sync state is healthy (recent successful run).

    Args:
        state: Sync state of one organization
        max_age: Maximum age of the last successful run

    Returns:
        True if sync is healthy
    """
    if not state or state.status == "error":
        return False

    if not state.last_synced_at:
        return False

    age = utc_now() - ensure_utc(state.last_synced_at)
    return age < max_age
