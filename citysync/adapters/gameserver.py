"""
Game server API client for CitySync.

Provides read-only access to the ESX and QBCore API bridges for citizen and
vehicle records. Handles request headers, timeouts, optional retry and
envelope validation; record-level normalization lives in jobs.normalize.
"""

import logging
from typing import Any
from urllib.parse import quote

import requests
from pydantic import BaseModel, Field

from ..common.errors import ConfigurationError, SchemaError
from ..common.http import JSON_HEADERS, raise_for_status, request_with_retry

logger = logging.getLogger(__name__)


class GameServerConfig(BaseModel):
    """Game server API configuration."""

    base_url: str = Field(..., description="Game server API base URL")
    timeout_seconds: float = Field(default=30, gt=0, description="Per-request timeout")
    max_attempts: int = Field(default=1, ge=1, description="Attempts on connection errors")


class GameServerClient:
    """Game server API client for the ESX and QBCore bridges."""

    def __init__(self, config: GameServerConfig):
        """Initialize game server client."""
        if not config or not config.base_url:
            raise ConfigurationError("Game server base URL not configured")

        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update(
            {
                **JSON_HEADERS,
                "User-Agent": "CitySync/1.0",
            }
        )

    def fetch_json(self, path: str) -> Any:
        """
        GET a resource and return its decoded JSON body.

        Raises:
            TransportError: On a non-2xx response
            SchemaError: If the body is not valid JSON
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"Game server API request: GET {url}")

        response = request_with_retry(
            self.session,
            "GET",
            url,
            timeout=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
        )
        raise_for_status(response, url)

        try:
            return response.json()
        except ValueError as e:
            raise SchemaError(f"Response from {url} is not valid JSON") from e

    def _fetch_list(self, path: str) -> list[dict]:
        """Fetch an endpoint that must return a JSON array of objects."""
        data = self.fetch_json(path)

        if not isinstance(data, list):
            raise SchemaError(f"Expected a JSON array from {path}, got {type(data).__name__}")

        records = [item for item in data if isinstance(item, dict)]
        if len(records) != len(data):
            raise SchemaError(
                f"Expected only objects from {path}, got {len(data) - len(records)} other values"
            )

        return records

    def fetch_esx_citizens(self) -> list[dict]:
        """Get all citizens from an ESX server."""
        logger.info("Fetching citizens from ESX")
        citizens = self._fetch_list("/esx/citizens")
        logger.info(f"Fetched {len(citizens)} ESX citizens")
        return citizens

    def fetch_qbcore_citizens(self) -> list[dict]:
        """Get all citizens from a QBCore server."""
        logger.info("Fetching citizens from QBCore")
        citizens = self._fetch_list("/qbcore/citizens")
        logger.info(f"Fetched {len(citizens)} QBCore citizens")
        return citizens

    def fetch_vehicles(self, citizen_id: str) -> list[dict]:
        """Get the vehicles owned by one citizen."""
        vehicles = self._fetch_list(f"/vehicles/{quote(str(citizen_id), safe=':')}")
        logger.debug(f"Fetched {len(vehicles)} vehicles for citizen {citizen_id}")
        return vehicles

    def fetch_citizens(self, system: str) -> list[dict]:
        """Get all citizens for the given system ("esx" or "qbcore")."""
        if system == "esx":
            return self.fetch_esx_citizens()
        if system == "qbcore":
            return self.fetch_qbcore_citizens()
        raise ConfigurationError(f"Unsupported sync system: {system!r}")

    def close(self) -> None:
        self.session.close()
