"""
Exception hierarchy for CitySync.

Configuration and transport errors raised during the citizen phase end a
sync run; schema errors on a single record are counted, not raised further.
"""


class SyncError(Exception):
    """Base exception for CitySync errors."""

    pass


class ConfigurationError(SyncError):
    """Missing or invalid sync configuration (e.g. no base URL)."""

    pass


class TransportError(SyncError):
    """Non-2xx response from the game server API."""

    def __init__(self, message: str, status_code: int | None = None, status_text: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text


class SchemaError(SyncError):
    """External payload does not match the expected shape."""

    pass


class OrganizationNotFoundError(SyncError):
    """No organization with the requested id."""

    pass
