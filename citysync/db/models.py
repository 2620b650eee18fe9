"""
SQLAlchemy models for the CitySync store.

Defines the canonical schema that ESX and QBCore game server data is
normalized into:
- Organizations (tenants) and their sync settings
- Citizens, keyed by the game server citizen id
- Vehicles, keyed by plate
"""

import json

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

SYNC_SYSTEMS = ("esx", "qbcore")
DEFAULT_SYNC_SYSTEM = "qbcore"
DEFAULT_SYNC_INTERVAL_MS = 300000


class Organization(Base):
    """
    A community server (tenant) and its sync settings.

    The external system flavour is stored in the JSON metadata blob under
    ``syncSystem``.
    """

    __tablename__ = "organizations"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    api_url = Column(Text)
    sync_interval = Column(BigInteger, default=DEFAULT_SYNC_INTERVAL_MS)  # milliseconds
    org_metadata = Column(Text)  # JSON blob, e.g. {"syncSystem": "esx"}
    last_sync_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    citizens = relationship("Citizen", back_populates="organization")
    vehicles = relationship("Vehicle", back_populates="organization")

    @property
    def sync_system(self) -> str:
        """External system configured for this organization."""
        try:
            metadata = json.loads(self.org_metadata) if self.org_metadata else {}
        except ValueError:
            metadata = {}
        if not isinstance(metadata, dict):
            return DEFAULT_SYNC_SYSTEM
        return metadata.get("syncSystem", DEFAULT_SYNC_SYSTEM)


class Citizen(Base):
    """
    Player character synced from the game server.

    Nested game documents are kept as JSON text; the fields used for
    lookups are extracted into scalar columns.
    """

    __tablename__ = "citizens"

    citizen_id = Column(Text, primary_key=True)
    organization_id = Column(
        Text, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )

    name = Column(Text, nullable=False)
    first_name = Column(Text)
    last_name = Column(Text)
    date_of_birth = Column(DateTime(timezone=True))
    gender = Column(Text)
    phone = Column(Text)
    nationality = Column(Text)

    # JSON documents
    money = Column(Text)
    charinfo = Column(Text)
    job = Column(Text)
    gang = Column(Text)
    position = Column(Text)
    citizen_metadata = Column(Text)
    inventory = Column(Text)

    # Extracted from metadata
    fingerprint = Column(Text)
    blood_type = Column(Text)
    is_dead = Column(Boolean, default=False)
    is_handcuffed = Column(Boolean, default=False)
    in_jail = Column(Integer, default=0)  # minutes

    last_updated = Column(DateTime(timezone=True))
    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="citizens")
    vehicles = relationship("Vehicle", back_populates="citizen")

    __table_args__ = (
        Index("ix_citizens_organization_id", "organization_id"),
        Index("ix_citizens_fingerprint", "fingerprint"),
        Index("ix_citizens_last_synced_at", "last_synced_at"),
    )


class Vehicle(Base):
    """
    Owned vehicle synced from the game server.

    Keyed by plate, so a plate seen under another citizen moves to that
    citizen on the next sync.
    """

    __tablename__ = "vehicles"

    plate = Column(Text, primary_key=True)
    citizen_id = Column(Text, ForeignKey("citizens.citizen_id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        Text, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )

    vin = Column(Text)
    hash = Column(Text)
    vehicle = Column(Text)  # spawn name
    model = Column(Text)
    brand = Column(Text)
    type = Column(Text)
    vehicle_class = Column(Text)

    fuel = Column(Float)
    engine_health = Column(Float)
    body_health = Column(Float)
    mileage = Column(Float)
    driving_distance = Column(Float)

    # JSON documents
    color = Column(Text)
    damage = Column(Text)
    mods = Column(Text)
    extras = Column(Text)
    glovebox = Column(Text)
    trunk = Column(Text)
    last_position = Column(Text)

    state = Column(Text)  # 'out' | 'in' | 'impound' | 'unknown'
    garage = Column(Text)
    garage_state = Column(Text)
    stored = Column(Boolean)
    wheelclamp = Column(Boolean)
    custom_name = Column(Text)
    is_favorite = Column(Boolean, default=False)

    # Finance and impound
    depot_price = Column(Float)
    balance = Column(Float)
    payment_amount = Column(Float)
    payments_left = Column(Integer)
    finance_time = Column(DateTime(timezone=True))
    impounded_time = Column(DateTime(timezone=True))
    impound_reason = Column(Text)
    impounded_by = Column(Text)
    impound_type = Column(Text)
    impound_fee = Column(Float)
    impound_time = Column(DateTime(timezone=True))

    job = Column(Text)
    stored_in_gang = Column(Text)
    shared_garage_id = Column(Text)

    last_updated = Column(DateTime(timezone=True))
    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    citizen = relationship("Citizen", back_populates="vehicles")
    organization = relationship("Organization", back_populates="vehicles")

    __table_args__ = (
        Index("ix_vehicles_citizen_id", "citizen_id"),
        Index("ix_vehicles_organization_id", "organization_id"),
        Index("ix_vehicles_state", "state"),
    )
