"""
Tests for the game server API client.

Mocks the requests session to check URLs, headers, envelope validation,
status errors and the optional retry on transport failures.
"""

from unittest.mock import Mock, patch

import pytest
from requests.exceptions import ConnectionError

from citysync.adapters.gameserver import GameServerClient, GameServerConfig
from citysync.common.errors import ConfigurationError, SchemaError, TransportError


def _response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = payload
    return response


@pytest.fixture
def config() -> GameServerConfig:
    return GameServerConfig(base_url="http://game.test:30120/", timeout_seconds=5)


class TestGameServerClient:
    """Test cases for the game server client."""

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_session_headers(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)

        assert client.base_url == "http://game.test:30120"
        assert mock_session.headers["Accept"] == "application/json"
        assert mock_session.headers["Cache-Control"] == "no-cache"
        assert mock_session.headers["Pragma"] == "no-cache"

    def test_missing_base_url(self):
        with pytest.raises(ConfigurationError):
            GameServerClient(GameServerConfig(base_url=""))

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_fetch_citizens_per_system(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session.request.return_value = _response(payload=[{"citizenid": "QB1"}])
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)

        assert client.fetch_citizens("qbcore") == [{"citizenid": "QB1"}]
        assert mock_session.request.call_args.kwargs["url"] == "http://game.test:30120/qbcore/citizens"
        assert mock_session.request.call_args.kwargs["timeout"] == 5

        client.fetch_citizens("esx")
        assert mock_session.request.call_args.kwargs["url"] == "http://game.test:30120/esx/citizens"

        with pytest.raises(ConfigurationError):
            client.fetch_citizens("vrp")

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_fetch_vehicles_quotes_citizen_id(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session.request.return_value = _response(payload=[])
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)
        client.fetch_vehicles("char1:5a3f0c")
        assert mock_session.request.call_args.kwargs["url"].endswith("/vehicles/char1:5a3f0c")

        client.fetch_vehicles("QB 1/2")
        assert mock_session.request.call_args.kwargs["url"].endswith("/vehicles/QB%201%2F2")

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_non_2xx_raises_transport_error(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session.request.return_value = _response(
            status_code=500, reason="Internal Server Error"
        )
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)

        with pytest.raises(TransportError) as exc_info:
            client.fetch_citizens("qbcore")

        assert str(exc_info.value) == "API request failed: Internal Server Error"
        assert exc_info.value.status_code == 500

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_envelope_must_be_array_of_objects(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session_class.return_value = mock_session
        client = GameServerClient(config)

        mock_session.request.return_value = _response(payload={"data": []})
        with pytest.raises(SchemaError):
            client.fetch_citizens("qbcore")

        mock_session.request.return_value = _response(payload=[{"plate": "A"}, "B"])
        with pytest.raises(SchemaError):
            client.fetch_vehicles("QB1")

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_invalid_json_raises_schema_error(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        response = _response()
        response.json.side_effect = ValueError("Expecting value")
        mock_session.request.return_value = response
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)

        with pytest.raises(SchemaError):
            client.fetch_vehicles("QB1")

    @patch("citysync.adapters.gameserver.requests.Session")
    def test_no_retry_by_default(self, mock_session_class, config):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session.request.side_effect = ConnectionError("refused")
        mock_session_class.return_value = mock_session

        client = GameServerClient(config)

        with pytest.raises(ConnectionError):
            client.fetch_citizens("qbcore")
        assert mock_session.request.call_count == 1

    @patch("time.sleep")
    @patch("citysync.adapters.gameserver.requests.Session")
    def test_retries_transport_failures_when_configured(self, mock_session_class, mock_sleep):
        mock_session = Mock()
        mock_session.headers = {}
        mock_session.request.side_effect = [
            ConnectionError("reset"),
            _response(payload=[{"citizenid": "QB1"}]),
        ]
        mock_session_class.return_value = mock_session

        client = GameServerClient(GameServerConfig(base_url="http://game.test", max_attempts=3))

        assert client.fetch_citizens("qbcore") == [{"citizenid": "QB1"}]
        assert mock_session.request.call_count == 2
