"""
Shared fixtures: app configuration and a throwaway SQLite store.
"""

from pathlib import Path

import pytest

from citysync.common.cache import view_cache
from citysync.config.loader import reload_config
from citysync.db.config import DatabaseConfig
from citysync.db.models import Base, Organization
from citysync.db import sync_state  # noqa: F401  registers the sync_state table
from citysync.db.deps import get_session

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def app_config(monkeypatch):
    """Load the repository's config/app.yaml regardless of the working directory."""
    monkeypatch.setenv("CITYSYNC_CONFIG", str(ROOT / "config" / "app.yaml"))
    reload_config()
    view_cache.clear()
    yield
    view_cache.clear()
    reload_config()


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file with the full schema."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'citysync.db'}")
    DatabaseConfig.reset()
    engine = DatabaseConfig.get_engine()
    Base.metadata.create_all(engine)
    yield engine
    DatabaseConfig.reset()


@pytest.fixture
def organization(db) -> str:
    """A QBCore organization with an API URL configured."""
    with get_session() as session:
        session.add(
            Organization(
                id="org-1",
                name="Los Santos RP",
                api_url="http://game.test:30120",
                sync_interval=300000,
                org_metadata='{"syncSystem": "qbcore"}',
            )
        )
    return "org-1"
