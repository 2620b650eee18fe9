"""
Citizen and vehicle normalization.

Maps the ESX citizen, QBCore citizen and shared vehicle payloads into the
canonical rows written to the store. Transforms are pure apart from logging:
malformed nested JSON and unparseable dates are replaced by defaults with a
warning, and every input record yields exactly one output row.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from ..adapters.payloads import ApiVehicle, ESXCitizen, QBCoreCitizen, validate_payload
from ..common.etl import (
    coerce_int,
    epoch_to_datetime,
    json_serialize,
    parse_date,
    parse_if_string,
    status_percent,
)
from ..utils.time_windows import utc_now

logger = logging.getLogger(__name__)

FALLBACK_BIRTH_DATE = datetime(2000, 1, 1, tzinfo=UTC)
UNKNOWN = "Unknown"

VEHICLE_STATES = {0: "out", 1: "in", 2: "impound"}


def _as_dict(value: Any) -> dict:
    parsed = parse_if_string(value, {})
    return parsed if isinstance(parsed, dict) else {}


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def birth_date(value: Any, citizen_id: str) -> datetime:
    """Parse a birth date, falling back to 2000-01-01 when missing or invalid."""
    parsed = parse_date(value) if isinstance(value, str) else None
    if parsed is None:
        if value:
            logger.warning(f"Invalid birthdate for citizen {citizen_id}: {value}")
        return FALLBACK_BIRTH_DATE
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def display_name(first_name: str | None, last_name: str | None, fallback: str | None = None) -> str:
    name = " ".join(part for part in (first_name, last_name) if part).strip()
    return name or fallback or UNKNOWN


def transform_esx_citizen(raw: dict | ESXCitizen, organization_id: str) -> dict:
    """
    Transform an ESX citizen to the canonical citizen row.

    ESX keeps accounts, metadata, position, status and inventory as JSON
    text; ``black_money`` maps to crypto and hunger/thirst come from the
    status effect list.

    Args:
        raw: Raw ESX citizen record
        organization_id: Owning organization

    Returns:
        Canonical citizen row

    Raises:
        SchemaError: If the record has no identifier
    """
    citizen = validate_payload(ESXCitizen, raw)
    citizen_id = citizen.identifier

    accounts = _as_dict(citizen.accounts)
    metadata = _as_dict(citizen.metadata)
    position = _as_dict(citizen.position)
    statuses = parse_if_string(citizen.status, [])
    inventory = parse_if_string(citizen.inventory, [])

    hunger = status_percent(statuses, "hunger")
    thirst = status_percent(statuses, "thirst")

    fingerprint = metadata.get("fingerprint")
    blood_type = metadata.get("bloodtype")
    dob = birth_date(citizen.dateofbirth, citizen_id)
    gender = citizen.sex or UNKNOWN
    phone = citizen.phone_number or ""
    now = utc_now()

    return {
        "citizen_id": citizen_id,
        "organization_id": organization_id,
        "name": display_name(citizen.firstname, citizen.lastname),
        "first_name": citizen.firstname,
        "last_name": citizen.lastname,
        "date_of_birth": dob,
        "gender": gender,
        "phone": phone,
        "nationality": UNKNOWN,  # not tracked by ESX
        "money": json_serialize(
            {
                "cash": accounts.get("money", 0),
                "bank": accounts.get("bank", 0),
                "crypto": accounts.get("black_money", 0),
            }
        ),
        "charinfo": json_serialize(
            {
                "firstname": citizen.firstname,
                "lastname": citizen.lastname,
                "birthdate": citizen.dateofbirth,
                "gender": gender,
                "nationality": UNKNOWN,
                "phone": phone,
            }
        ),
        "job": json_serialize({"name": citizen.job, "grade": citizen.job_grade}),
        "gang": None,
        "position": json_serialize(position),
        "citizen_metadata": json_serialize(
            {
                **metadata,
                "hunger": hunger,
                "thirst": thirst,
                "health": metadata.get("health", 100),
                "armor": metadata.get("armor", 0),
                "stress": metadata.get("stress", 0),
            }
        ),
        "inventory": json_serialize(inventory),
        "fingerprint": fingerprint if isinstance(fingerprint, str) else None,
        "blood_type": blood_type if isinstance(blood_type, str) else None,
        "is_dead": _as_bool(citizen.is_dead),
        "is_handcuffed": False,  # not tracked by ESX
        "in_jail": 0,  # not tracked by ESX
        "last_updated": now,
        "last_synced_at": now,
    }


def transform_qbcore_citizen(raw: dict | QBCoreCitizen, organization_id: str) -> dict:
    """
    Transform a QBCore citizen to the canonical citizen row.

    charinfo, money and metadata may be JSON text or objects depending on
    the API bridge; the death, handcuff and jail flags fall back to the
    metadata document when the top-level columns are absent.

    Raises:
        SchemaError: If the record has no citizenid
    """
    citizen = validate_payload(QBCoreCitizen, raw)
    citizen_id = citizen.citizenid

    charinfo = _as_dict(citizen.charinfo)
    money = _as_dict(citizen.money)
    metadata = _as_dict(citizen.metadata)

    first_name = charinfo.get("firstname")
    last_name = charinfo.get("lastname")
    gender = charinfo.get("gender")
    fingerprint = metadata.get("fingerprint")
    blood_type = metadata.get("bloodtype")
    now = utc_now()

    return {
        "citizen_id": citizen_id,
        "organization_id": organization_id,
        "name": display_name(first_name, last_name, citizen.name),
        "first_name": first_name,
        "last_name": last_name,
        "date_of_birth": birth_date(charinfo.get("birthdate"), citizen_id),
        "gender": str(gender) if gender is not None else UNKNOWN,
        "phone": charinfo.get("phone"),
        "nationality": charinfo.get("nationality"),
        "money": json_serialize(
            {
                "cash": money.get("cash", 0),
                "bank": money.get("bank", 0),
                "crypto": money.get("crypto", 0),
            }
        ),
        "charinfo": json_serialize(charinfo),
        "job": json_serialize(parse_if_string(citizen.job)),
        "gang": json_serialize(parse_if_string(citizen.gang)),
        "position": json_serialize(parse_if_string(citizen.position)),
        "citizen_metadata": json_serialize(
            {
                **metadata,
                "health": metadata.get("health", 100),
                "armor": metadata.get("armor", 0),
                "hunger": metadata.get("hunger", 0),
                "thirst": metadata.get("thirst", 0),
                "stress": metadata.get("stress", 0),
            }
        ),
        "inventory": json_serialize(parse_if_string(citizen.inventory, [])),
        "fingerprint": fingerprint if isinstance(fingerprint, str) else None,
        "blood_type": blood_type if isinstance(blood_type, str) else None,
        "is_dead": _as_bool(_first_present(citizen.isDead, metadata.get("isdead"))),
        "is_handcuffed": _as_bool(_first_present(citizen.isHandcuffed, metadata.get("ishandcuffed"))),
        "in_jail": coerce_int(_first_present(citizen.inJail, metadata.get("injail"))) or 0,
        "last_updated": now,
        "last_synced_at": now,
    }


def _vehicle_state(value: Any) -> str:
    return VEHICLE_STATES.get(coerce_int(value), "unknown")


def _mods_details(mods: dict) -> dict:
    """Extract colour, damage, extras and last position from a mods document."""
    color: dict = {}
    damage: dict = {}

    if any(k in mods for k in ("color1", "color2", "pearlescentColor")):
        color = {
            "primary": mods.get("color1"),
            "secondary": mods.get("color2"),
            "pearlescent": mods.get("pearlescentColor"),
        }

    if any(k in mods for k in ("bodyHealth", "engineHealth", "tankHealth", "tireHealth")):
        damage = {
            "body": mods.get("bodyHealth"),
            "engine": mods.get("engineHealth"),
            "tank": mods.get("tankHealth"),
            "wheels": mods.get("tireHealth"),
        }

    return {
        "color": color,
        "damage": damage,
        "extras": mods.get("extras"),
        "last_position": mods.get("lastPosition"),
    }


def transform_vehicle(raw: dict | ApiVehicle, citizen_id: str, organization_id: str) -> dict:
    """
    Transform a game server vehicle to the canonical vehicle row.

    Epoch-second timestamps become UTC datetimes (zero or missing gives
    None), the numeric garage state becomes out/in/impound, and colour and
    damage are pulled out of the mods document.

    Args:
        raw: Raw vehicle record
        citizen_id: Owner the vehicles were fetched for
        organization_id: Owning organization

    Returns:
        Canonical vehicle row

    Raises:
        SchemaError: If the record has no plate
    """
    vehicle = validate_payload(ApiVehicle, raw)
    plate = vehicle.plate

    mods = parse_if_string(vehicle.mods)
    if mods is not None and not isinstance(mods, dict):
        logger.warning(f"Ignoring non-object mods for vehicle {plate}")
        mods = None
    details = _mods_details(mods or {})

    now = utc_now()

    return {
        "plate": plate,
        "citizen_id": citizen_id,
        "organization_id": organization_id,
        "vin": vehicle.vin,
        "hash": str(vehicle.hash) if vehicle.hash is not None else None,
        "vehicle": vehicle.vehicle,
        "model": vehicle.vehicle.upper() if vehicle.vehicle else UNKNOWN,
        "brand": UNKNOWN,
        "type": vehicle.type,
        "vehicle_class": UNKNOWN,
        "fuel": vehicle.fuel,
        "engine_health": vehicle.engine,
        "body_health": vehicle.body,
        "mileage": vehicle.drivingdistance,
        "driving_distance": vehicle.drivingdistance,
        "color": json_serialize(details["color"]),
        "damage": json_serialize(details["damage"]),
        "mods": json_serialize(mods),
        "extras": json_serialize(details["extras"]),
        "glovebox": json_serialize(vehicle.glovebox) if vehicle.glovebox else None,
        "trunk": json_serialize(vehicle.trunk) if vehicle.trunk else None,
        "last_position": json_serialize(details["last_position"]),
        "state": _vehicle_state(vehicle.state),
        "garage": vehicle.garage,
        "garage_state": vehicle.status,
        "stored": _as_bool(vehicle.stored) if vehicle.stored is not None else None,
        "wheelclamp": _as_bool(vehicle.wheelclamp) if vehicle.wheelclamp is not None else None,
        "custom_name": vehicle.custom_name,
        "is_favorite": coerce_int(vehicle.is_favorite) == 1,
        "depot_price": vehicle.depotprice,
        "balance": vehicle.balance,
        "payment_amount": vehicle.paymentamount,
        "payments_left": vehicle.paymentsleft,
        "finance_time": epoch_to_datetime(vehicle.financetime),
        "impounded_time": epoch_to_datetime(vehicle.impoundedtime),
        "impound_reason": vehicle.impoundreason,
        "impounded_by": vehicle.impoundedby,
        "impound_type": vehicle.impoundtype,
        "impound_fee": vehicle.impoundfee,
        "impound_time": epoch_to_datetime(vehicle.impoundtime),
        "job": vehicle.job,
        "stored_in_gang": vehicle.stored_in_gang,
        "shared_garage_id": str(vehicle.shared_garage_id) if vehicle.shared_garage_id else None,
        "last_updated": epoch_to_datetime(vehicle.last_update) or now,
        "last_synced_at": now,
    }
