"""
Tests for citizen and vehicle upserts.

Run against a SQLite store. The PostgreSQL branch is checked against a
mocked session, and against a live server when CITYSYNC_TEST_POSTGRES_URL
is set.
"""

import os
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from citysync.db.config import DatabaseConfig
from citysync.db.deps import get_session, get_session_no_commit
from citysync.db.models import Base, Citizen, Organization, Vehicle
from citysync.db.upserts import upsert_citizen, upsert_vehicle
from citysync.jobs.normalize import transform_qbcore_citizen, transform_vehicle


def _citizen_row(citizen_id: str, organization_id: str = "org-1", firstname: str = "Carl") -> dict:
    return transform_qbcore_citizen(
        {
            "citizenid": citizen_id,
            "charinfo": {"firstname": firstname, "lastname": "Johnson"},
            "money": {"cash": 10, "bank": 20},
        },
        organization_id,
    )


def _vehicle_row(plate: str, citizen_id: str, fuel: float = 50.0) -> dict:
    return transform_vehicle(
        {"plate": plate, "vehicle": "sultan", "fuel": fuel, "state": 1}, citizen_id, "org-1"
    )


def test_citizen_upsert_is_idempotent(db):
    assert upsert_citizen(_citizen_row("QB1")) is True
    assert upsert_citizen(_citizen_row("QB1")) is False

    with get_session_no_commit() as session:
        assert session.scalar(select(func.count()).select_from(Citizen)) == 1


def test_citizen_update_rewrites_fields(db):
    upsert_citizen(_citizen_row("QB1", firstname="Carl"))
    upsert_citizen(_citizen_row("QB1", firstname="Sean"))

    with get_session_no_commit() as session:
        citizen = session.get(Citizen, "QB1")
        assert citizen.first_name == "Sean"
        assert citizen.name == "Sean Johnson"


def test_citizen_keeps_its_organization(db):
    upsert_citizen(_citizen_row("QB1", organization_id="org-1"))
    upsert_citizen(_citizen_row("QB1", organization_id="org-2"))

    with get_session_no_commit() as session:
        assert session.get(Citizen, "QB1").organization_id == "org-1"


def test_vehicle_ownership_transfer(db):
    upsert_citizen(_citizen_row("A"))
    upsert_citizen(_citizen_row("B"))

    assert upsert_vehicle(_vehicle_row("ABC123", "A")) is True
    assert upsert_vehicle(_vehicle_row("ABC123", "B", fuel=20.0)) is False

    with get_session_no_commit() as session:
        vehicles = session.scalars(select(Vehicle).where(Vehicle.plate == "ABC123")).all()
        assert len(vehicles) == 1
        assert vehicles[0].citizen_id == "B"
        assert vehicles[0].fuel == 20.0


POSTGRES_URL = os.getenv("CITYSYNC_TEST_POSTGRES_URL")


def _postgres_session(inserted) -> MagicMock:
    session = MagicMock()
    session.get_bind.return_value.dialect.name = "postgresql"
    session.execute.return_value.scalar_one.return_value = inserted
    return session


def test_postgres_insert_flag_is_computed_in_sql():
    session = _postgres_session(True)

    assert upsert_citizen(_citizen_row("QB1"), session=session) is True

    stmt = session.execute.call_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert "ON CONFLICT (citizen_id) DO UPDATE" in sql
    assert "RETURNING (xmax = 0) AS inserted" in sql


def test_postgres_update_reports_false():
    session = _postgres_session(False)

    assert upsert_vehicle(_vehicle_row("ABC123", "A"), session=session) is False
    # No existence pre-check on PostgreSQL
    assert session.execute.call_count == 1


@pytest.mark.skipif(not POSTGRES_URL, reason="CITYSYNC_TEST_POSTGRES_URL not set")
def test_postgres_reports_created_then_updated(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", POSTGRES_URL)
    DatabaseConfig.reset()
    engine = DatabaseConfig.get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    try:
        with get_session() as session:
            session.add(Organization(id="org-1", name="Los Santos RP"))

        assert upsert_citizen(_citizen_row("NEW1")) is True
        assert upsert_citizen(_citizen_row("NEW1")) is False
        assert upsert_vehicle(_vehicle_row("ABC123", "NEW1")) is True
        assert upsert_vehicle(_vehicle_row("ABC123", "NEW1", fuel=20.0)) is False
    finally:
        Base.metadata.drop_all(engine)
        DatabaseConfig.reset()
