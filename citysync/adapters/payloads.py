"""
Payload models for the game server API.

ESX and QBCore expose different citizen shapes; vehicles share one shape.
Only the natural key is required. Every other field may be missing, and
nested documents may arrive either as JSON text or already decoded, so they
are typed loosely and parsed by the normalizers.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..common.errors import SchemaError


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class ESXCitizen(_Payload):
    """Row of the ESX ``users`` table as served by /esx/citizens."""

    identifier: str = Field(..., min_length=1)
    firstname: str | None = None
    lastname: str | None = None
    dateofbirth: str | None = None
    sex: str | None = None
    phone_number: str | None = None
    accounts: Any = None  # {"money", "bank", "black_money"}
    metadata: Any = None
    position: Any = None
    status: Any = None  # [{"name", "percent", "val"}]
    inventory: Any = None
    job: str | None = None
    job_grade: Any = None
    is_dead: Any = None


class QBCoreCitizen(_Payload):
    """Row of the QBCore ``players`` table as served by /qbcore/citizens."""

    citizenid: str = Field(..., min_length=1)
    name: str | None = None
    charinfo: Any = None
    money: Any = None
    job: Any = None
    gang: Any = None
    position: Any = None
    metadata: Any = None
    inventory: Any = None
    isDead: Any = None
    isHandcuffed: Any = None
    inJail: Any = None


class ApiVehicle(_Payload):
    """Owned vehicle as served by /vehicles/{citizenId}."""

    plate: str = Field(..., min_length=1)
    citizenid: str | None = None
    vehicle: str | None = None
    hash: Any = None
    mods: Any = None
    vin: str | None = None
    garage: str | None = None
    fuel: float | None = None
    engine: float | None = None
    body: float | None = None
    state: Any = None
    depotprice: float | None = None
    drivingdistance: float | None = None
    status: str | None = None
    balance: float | None = None
    paymentamount: float | None = None
    paymentsleft: int | None = None
    financetime: Any = None
    job: str | None = None
    type: str | None = None
    stored: Any = None
    glovebox: Any = None
    trunk: Any = None
    wheelclamp: Any = None
    last_update: Any = None
    custom_name: str | None = None
    is_favorite: Any = None
    stored_in_gang: str | None = None
    shared_garage_id: Any = None
    impoundedtime: Any = None
    impoundreason: str | None = None
    impoundedby: str | None = None
    impoundtype: str | None = None
    impoundfee: float | None = None
    impoundtime: Any = None


def validate_payload(model: type[_Payload], data: Any) -> _Payload:
    """
    Validate one raw record against its payload model.

    Raises:
        SchemaError: If the record is not an object or fails validation
    """
    if isinstance(data, model):
        return data

    if not isinstance(data, dict):
        raise SchemaError(f"{model.__name__} payload must be an object, got {type(data).__name__}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise SchemaError(f"Invalid {model.__name__} payload ({fields})") from e


def natural_key(data: Any, *fields: str) -> str:
    """Best-effort natural key of a raw record for log messages."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if isinstance(data, dict):
        for field in fields:
            if data.get(field):
                return str(data[field])
    return "<unknown>"
