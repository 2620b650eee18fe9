"""
UPSERT helpers for the CitySync store.

Implements conflict resolution using SQLAlchemy's insert().on_conflict_do_update
for idempotent loading of game server records. Each record is written in its
own session so a failing row never rolls back its siblings.
"""

from collections.abc import Sequence

from sqlalchemy import Table, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .deps import get_session
from .models import Citizen, Vehicle

# Never rewritten on update: a record keeps the tenant it was created under
CITIZEN_CREATE_ONLY = ("citizen_id", "organization_id", "created_at")
VEHICLE_CREATE_ONLY = ("plate", "organization_id", "created_at")


def dialect_insert(session: Session):
    """Return the insert() construct that supports ON CONFLICT for this session."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def _exec_upsert(
    session: Session,
    table: Table,
    row: dict,
    conflict_col: str,
    create_only: Sequence[str],
    touch: dict | None = None,
) -> bool:
    """Execute a single-row upsert and return True if the row was inserted.

    PostgreSQL reports the branch through RETURNING (xmax = 0), evaluated
    server side because psycopg2 returns the raw xid column as text. Other
    dialects check for the key before writing.
    """
    insert = dialect_insert(session)
    stmt = insert(table).values(row)
    update_values = {c: stmt.excluded[c] for c in row if c not in create_only}
    if touch:
        update_values.update(touch)
    stmt = stmt.on_conflict_do_update(index_elements=[conflict_col], set_=update_values)

    if session.get_bind().dialect.name == "postgresql":
        result = session.execute(stmt.returning(literal_column("(xmax = 0)").label("inserted")))
        return bool(result.scalar_one())

    key_col = table.c[conflict_col]
    existed = session.execute(
        select(key_col).where(key_col == row[conflict_col])
    ).first() is not None
    session.execute(stmt)
    return not existed


def upsert_citizen(row: dict, session: Session | None = None) -> bool:
    """
    Upsert one citizen with conflict resolution on citizen_id.
    Returns True when the citizen was created, False when updated.
    """

    def _run(sess: Session) -> bool:
        return _exec_upsert(
            sess,
            Citizen.__table__,
            row,
            conflict_col="citizen_id",
            create_only=CITIZEN_CREATE_ONLY,
            touch={"updated_at": func.now()},
        )

    if session is not None:
        return _run(session)
    with get_session() as sess:
        return _run(sess)


def upsert_vehicle(row: dict, session: Session | None = None) -> bool:
    """
    Upsert one vehicle with conflict resolution on plate.

    The owning citizen is part of the update so a transferred plate follows
    its new owner. Returns True when the vehicle was created.
    """

    def _run(sess: Session) -> bool:
        return _exec_upsert(
            sess,
            Vehicle.__table__,
            row,
            conflict_col="plate",
            create_only=VEHICLE_CREATE_ONLY,
        )

    if session is not None:
        return _run(session)
    with get_session() as sess:
        return _run(sess)
