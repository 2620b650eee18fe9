"""
Sync configuration and result models.

SyncConfig is built from persisted organization settings before each run;
SyncStatusResult is what the HTTP layer returns to callers.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

SyncSystem = Literal["esx", "qbcore"]


class SystemEndpoint(BaseModel):
    """Base URL of one game server API bridge."""

    base_url: str = Field(..., min_length=1, description="Game server API base URL")


class SyncConfig(BaseModel):
    """Per-organization sync configuration."""

    system: SyncSystem
    organization_id: str = Field(..., min_length=1)
    sync_interval: int | None = Field(default=None, description="Milliseconds between syncs")
    esx: SystemEndpoint | None = None
    qbcore: SystemEndpoint | None = None

    @property
    def base_url(self) -> str | None:
        """Base URL of the selected system, if configured."""
        endpoint = self.esx if self.system == "esx" else self.qbcore
        return endpoint.base_url if endpoint else None


class SyncStats(BaseModel):
    """Per-entity upsert counters."""

    created: int = 0
    updated: int = 0
    errors: int = 0

    def __add__(self, other: "SyncStats") -> "SyncStats":
        return SyncStats(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
        )

    @property
    def total(self) -> int:
        return self.created + self.updated


class EntityStats(BaseModel):
    citizens: SyncStats = Field(default_factory=SyncStats)
    vehicles: SyncStats = Field(default_factory=SyncStats)


class SyncStatusResult(BaseModel):
    """Outcome of a sync run or a status query."""

    status: Literal["idle", "error"]
    last_sync_at: datetime | None = None
    error: str | None = None
    stats: EntityStats | None = None


class SyncConfigUpdate(BaseModel):
    """Body of the sync configuration route."""

    model_config = ConfigDict(populate_by_name=True)

    api_url: HttpUrl = Field(..., alias="apiUrl")
    sync_interval: int | None = Field(default=None, ge=60000, alias="syncInterval")
    sync_system: SyncSystem | None = Field(default=None, alias="syncSystem")
