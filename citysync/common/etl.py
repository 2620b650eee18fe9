"""
Shared ETL utilities for data transformation and extraction.

Provides the tolerant parsing helpers used by the citizen and vehicle
normalizers: JSON-or-string fields, game server date formats, epoch
timestamps and numeric coercion.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Formats seen in ESX identity and QBCore charinfo birth dates
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
)


def parse_if_string(value: Any, default: Any = None) -> Any:
    """
    Parse a field that may arrive either as JSON text or already decoded.

    Game servers store most nested documents as JSON text columns, but some
    API bridges decode them before responding.

    Args:
        value: Raw field value
        default: Returned when the value is missing or is malformed JSON

    Returns:
        Decoded value, the value itself if it was not a string, or default

    Examples:
        >>> parse_if_string('{"cash": 10}')
        {'cash': 10}
        >>> parse_if_string({"cash": 10})
        {'cash': 10}
        >>> parse_if_string("not json", {})
        {}
    """
    if value is None:
        return default

    if not isinstance(value, str):
        return value

    if not value.strip():
        return default

    try:
        return json.loads(value)
    except (ValueError, TypeError):
        logger.warning(f"Could not decode JSON field: {value[:80]!r}")
        return default


def parse_date(date_str: str) -> Optional[datetime]:
    """
    Parse date string supporting common game server date formats.

    Args:
        date_str: Date string to parse

    Returns:
        Parsed datetime object, None if parsing fails

    Examples:
        >>> parse_date("1990-05-17")
        datetime(1990, 5, 17, 0, 0)
        >>> parse_date("17/05/1990")
        datetime(1990, 5, 17, 0, 0)
    """
    if not date_str or not isinstance(date_str, str):
        return None

    date_str = date_str.strip()

    if "T" in date_str:
        try:
            return datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError:
            pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue

    logger.warning(f"Could not parse date string: {date_str}")
    return None


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert an epoch-seconds value to a UTC datetime.

    Fractional seconds are kept. Zero, missing and non-numeric values map
    to None rather than to the 1970 epoch.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not seconds:
        return None

    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Epoch timestamp out of range: {value}")
        return None


def status_percent(statuses: Any, name: str) -> float:
    """
    Look up the percent of a named status effect.

    Args:
        statuses: List of ``{"name": ..., "percent": ...}`` entries
        name: Status effect name (e.g. "hunger")

    Returns:
        The entry's percent, 0 when absent
    """
    if not isinstance(statuses, list):
        return 0

    for status in statuses:
        if isinstance(status, dict) and status.get("name") == name:
            percent = status.get("percent")
            return percent if isinstance(percent, (int, float)) else 0
    return 0


def json_serialize(obj: Any) -> Optional[str]:
    """
    Serialize a value for a JSON text column.

    Strings are assumed to be serialized already and are passed through.

    Args:
        obj: Object to serialize

    Returns:
        JSON string or None if the object is None or cannot be serialized
    """
    if obj is None:
        return None

    if isinstance(obj, str):
        return obj

    try:
        return json.dumps(obj, default=str, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.warning(f"JSON serialization failed: {e}")
        return None


def coerce_int(value: Any) -> Optional[int]:
    """
    Safely coerce value to integer.

    Handles numeric strings, floats, and None values gracefully.

    Args:
        value: Value to coerce to int

    Returns:
        Integer value or None if coercion fails

    Examples:
        >>> coerce_int("95.0")
        95
        >>> coerce_int(45.7)
        45
        >>> coerce_int("invalid")
        None
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, str):
            if '.' in value:
                return int(float(value))
            return int(value)

        if isinstance(value, (int, float)):
            return int(value)

        return None
    except (ValueError, TypeError, OverflowError):
        return None
