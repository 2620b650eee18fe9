"""
Tests for the citizen and vehicle sync job.

Runs against a SQLite store with a mocked game server client.
"""

import threading
import time
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select

from citysync.adapters.gameserver import GameServerClient
from citysync.common.cache import ViewCache
from citysync.common.errors import ConfigurationError, OrganizationNotFoundError, TransportError
from citysync.db.deps import get_session, get_session_no_commit
from citysync.db.models import Citizen, Organization, Vehicle
from citysync.db.sync_state import get_sync_state
from citysync.db.upserts import upsert_citizen, upsert_vehicle
from citysync.jobs.normalize import transform_qbcore_citizen, transform_vehicle
from citysync.jobs.sync_citizens import (
    SyncSettings,
    build_sync_config,
    get_sync_status,
    run_organization_sync,
    sync_citizens,
)
from citysync.schemas import SyncConfig, SystemEndpoint


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(batch_size=2, max_workers=2, run_timeout_seconds=30)


@pytest.fixture
def qbcore_config() -> SyncConfig:
    return SyncConfig(
        system="qbcore",
        organization_id="org-1",
        qbcore=SystemEndpoint(base_url="http://game.test:30120"),
    )


def _qbcore_citizen(citizen_id: str, firstname: str) -> dict:
    return {
        "citizenid": citizen_id,
        "charinfo": f'{{"firstname":"{firstname}","lastname":"Doe","birthdate":"1990-01-01"}}',
        "money": '{"cash":10,"bank":100,"crypto":0}',
        "metadata": "{}",
    }


TIMESTAMP_COLUMNS = {"created_at", "updated_at", "last_synced_at", "last_updated"}


def _stored_business_columns() -> dict:
    """Every stored citizen and vehicle, without sync timestamps."""
    snapshot = {}
    with get_session_no_commit() as session:
        for model, key_column in ((Citizen, "citizen_id"), (Vehicle, "plate")):
            for row in session.scalars(select(model)).all():
                snapshot[(model.__tablename__, getattr(row, key_column))] = {
                    column.key: getattr(row, column.key)
                    for column in model.__table__.columns
                    if column.key not in TIMESTAMP_COLUMNS
                }
    return snapshot


@pytest.fixture
def mock_client() -> Mock:
    """Client serving citizens A and B; A's vehicle fetch fails."""
    client = Mock(spec=GameServerClient)
    client.fetch_citizens.return_value = [_qbcore_citizen("A", "Alice"), _qbcore_citizen("B", "Bob")]

    def fetch_vehicles(citizen_id):
        if citizen_id == "A":
            raise TransportError("API request failed: Bad Gateway", status_code=502)
        return [{"plate": "BBB222", "vehicle": "adder", "state": 0, "fuel": 64}]

    client.fetch_vehicles.side_effect = fetch_vehicles
    return client


class TestSyncCitizens:
    """Test cases for the full sync run."""

    def test_vehicle_fetch_failure_is_isolated(self, db, qbcore_config, mock_client, settings):
        # B's vehicle already exists, so the run updates it
        upsert_citizen(transform_qbcore_citizen(_qbcore_citizen("B", "Bob"), "org-1"))
        upsert_vehicle(transform_vehicle({"plate": "BBB222", "vehicle": "adder"}, "B", "org-1"))

        result = sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=ViewCache())

        assert result.status == "idle"
        assert result.error is None
        assert result.last_sync_at is not None
        assert result.stats.citizens.created == 1
        assert result.stats.citizens.updated == 1
        assert result.stats.vehicles.errors >= 1
        assert result.stats.vehicles.updated >= 1

        with get_session_no_commit() as session:
            assert session.scalar(select(func.count()).select_from(Citizen)) == 2
            vehicle = session.get(Vehicle, "BBB222")
            assert vehicle.state == "out"
            assert vehicle.fuel == 64

    def test_citizen_fetch_failure_ends_run(self, db, qbcore_config, settings):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.side_effect = TransportError(
            "API request failed: Internal Server Error", status_code=500
        )

        result = sync_citizens(qbcore_config, client=client, settings=settings, cache=ViewCache())

        assert result.status == "error"
        assert result.error == "API request failed: Internal Server Error"
        assert result.stats is None
        client.fetch_vehicles.assert_not_called()

    def test_invalid_citizen_is_counted_not_fatal(self, db, qbcore_config, mock_client, settings):
        mock_client.fetch_citizens.return_value = [
            _qbcore_citizen("B", "Bob"),
            {"name": "no citizen id"},
        ]

        result = sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=ViewCache())

        assert result.status == "idle"
        assert result.stats.citizens.created == 1
        assert result.stats.citizens.errors == 1
        # Vehicles are only fetched for citizens that were written
        mock_client.fetch_vehicles.assert_called_once_with("B")

    def test_no_vehicles_is_not_an_error(self, db, qbcore_config, settings):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.return_value = [_qbcore_citizen("A", "Alice")]
        client.fetch_vehicles.return_value = []

        result = sync_citizens(qbcore_config, client=client, settings=settings, cache=ViewCache())

        assert result.status == "idle"
        assert result.stats.vehicles.model_dump() == {"created": 0, "updated": 0, "errors": 0}

    def test_missing_base_url(self, db, settings):
        config = SyncConfig(system="esx", organization_id="org-1")

        result = sync_citizens(config, settings=settings, cache=ViewCache())

        assert result.status == "error"
        assert "base URL not configured" in result.error

    def test_successful_sync_invalidates_listings(self, db, qbcore_config, mock_client, settings):
        cache = ViewCache()
        cache.set(("org-1", "citizens"), ["stale"])
        cache.set(("org-1", "vehicles"), ["stale"])
        cache.set(("org-2", "citizens"), ["other"])

        sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=cache)

        assert cache.get(("org-1", "citizens")) is None
        assert cache.get(("org-1", "vehicles")) is None
        assert cache.get(("org-2", "citizens")) == ["other"]

    def test_repeated_citizen_id_keeps_latest_values(self, db, qbcore_config):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.return_value = [_qbcore_citizen("DUP", f"N{i}") for i in range(20)]
        client.fetch_vehicles.return_value = []
        settings = SyncSettings(batch_size=4, max_workers=8, run_timeout_seconds=30)

        result = sync_citizens(qbcore_config, client=client, settings=settings, cache=ViewCache())

        assert result.stats.citizens.model_dump() == {"created": 1, "updated": 0, "errors": 0}
        client.fetch_vehicles.assert_called_once_with("DUP")
        with get_session_no_commit() as session:
            assert session.scalar(select(func.count()).select_from(Citizen)) == 1
            assert session.get(Citizen, "DUP").first_name == "N19"

    def test_repeated_plate_keeps_latest_values(self, db, qbcore_config, settings):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.return_value = [_qbcore_citizen("A", "Alice")]
        client.fetch_vehicles.return_value = [
            {"plate": "AAA111", "vehicle": "adder", "fuel": fuel} for fuel in (10, 20, 30)
        ]

        result = sync_citizens(qbcore_config, client=client, settings=settings, cache=ViewCache())

        assert result.stats.vehicles.model_dump() == {"created": 1, "updated": 0, "errors": 0}
        with get_session_no_commit() as session:
            assert session.get(Vehicle, "AAA111").fuel == 30

    def test_repeated_run_leaves_store_unchanged(self, db, qbcore_config, mock_client, settings):
        sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=ViewCache())
        first = _stored_business_columns()

        result = sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=ViewCache())

        assert _stored_business_columns() == first
        assert result.stats.citizens.created == 0
        assert result.stats.citizens.updated == 2
        assert result.stats.vehicles.created == 0

    def test_deadline_waits_for_running_upserts(self, db, qbcore_config):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.return_value = [_qbcore_citizen(f"C{i}", "Slow") for i in range(3)]
        settings = SyncSettings(batch_size=2, max_workers=1, run_timeout_seconds=0.05)
        started = []
        finished = []
        lock = threading.Lock()

        def slow_upsert(row):
            with lock:
                started.append(row["citizen_id"])
            time.sleep(0.3)
            upsert_citizen(row)
            with lock:
                finished.append(row["citizen_id"])
            return True

        with patch("citysync.jobs.sync_citizens.upsert_citizen", slow_upsert):
            result = sync_citizens(qbcore_config, client=client, settings=settings, cache=ViewCache())

        # Nothing keeps writing once the run has returned
        assert finished == started
        assert result.stats.citizens.errors == 3
        client.fetch_vehicles.assert_not_called()


class TestSyncStatus:
    def test_reports_latest_sync(self, db, qbcore_config, mock_client, settings):
        assert get_sync_status("org-1").last_sync_at is None

        sync_citizens(qbcore_config, client=mock_client, settings=settings, cache=ViewCache())

        status = get_sync_status("org-1")
        assert status.status == "idle"
        assert status.last_sync_at is not None
        assert status.last_sync_at.tzinfo is not None


class TestBuildSyncConfig:
    def test_uses_organization_settings(self):
        organization = Organization(
            id="org-9",
            name="Vice City",
            api_url="http://esx.test",
            sync_interval=120000,
            org_metadata='{"syncSystem": "esx"}',
        )

        config = build_sync_config(organization)

        assert config.system == "esx"
        assert config.base_url == "http://esx.test"
        assert config.sync_interval == 120000
        assert config.qbcore is None

    def test_defaults_to_qbcore(self):
        organization = Organization(id="org-9", name="Vice City", api_url="http://qb.test")

        assert build_sync_config(organization).system == "qbcore"

    def test_requires_api_url(self):
        with pytest.raises(ConfigurationError):
            build_sync_config(Organization(id="org-9", name="Vice City"))


class TestRunOrganizationSync:
    def test_success_updates_organization_and_state(self, organization, mock_client, settings):
        result = run_organization_sync(organization, client=mock_client, settings=settings)

        assert result.status == "idle"
        with get_session_no_commit() as session:
            assert session.get(Organization, organization).last_sync_at is not None

        state = get_sync_state(organization)
        assert state.status == "success"
        assert state.error_count == 0

    def test_error_is_recorded(self, organization, settings):
        client = Mock(spec=GameServerClient)
        client.fetch_citizens.side_effect = TransportError("API request failed: Bad Gateway")

        result = run_organization_sync(organization, client=client, settings=settings)
        run_organization_sync(organization, client=client, settings=settings)

        assert result.status == "error"
        with get_session_no_commit() as session:
            assert session.get(Organization, organization).last_sync_at is None

        state = get_sync_state(organization)
        assert state.status == "error"
        assert state.error_message == "API request failed: Bad Gateway"
        assert state.error_count == 2

    def test_invalid_settings_leave_state_untouched(self, organization, mock_client, monkeypatch):
        def bad_cfg(key, default=None):
            return 0 if key == "sync.max_workers" else default

        monkeypatch.setattr("citysync.jobs.sync_citizens.cfg", bad_cfg)

        with pytest.raises(ConfigurationError):
            run_organization_sync(organization, client=mock_client)

        assert get_sync_state(organization) is None
        mock_client.fetch_citizens.assert_not_called()

    def test_unknown_organization(self, db):
        with pytest.raises(OrganizationNotFoundError):
            run_organization_sync("missing")

    def test_organization_without_api_url(self, organization):
        with get_session() as session:
            session.get(Organization, organization).api_url = None

        with pytest.raises(ConfigurationError):
            run_organization_sync(organization)
