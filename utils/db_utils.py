"""
Database utility helper functions
"""
from typing import Any, Dict, Sequence, Type
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import SQLModel


def _insert_for(session: AsyncSession, model: Type[SQLModel]):
    """Pick the dialect-specific INSERT that supports ON CONFLICT"""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def upsert(
    session: AsyncSession,
    model: Type[SQLModel],
    values: Dict[str, Any],
    conflict_fields: Sequence[str],
    immutable_fields: Sequence[str] = ("id", "created_at"),
) -> None:
    """
    Perform an upsert (INSERT ... ON CONFLICT DO UPDATE) for a SQLModel model.

    Args:
        session: AsyncSession instance
        model: SQLModel class representing the target table
        values: dict of column names to values for insert/update
        conflict_fields: columns forming the unique key to detect conflicts on
        immutable_fields: columns kept from the existing row on conflict
    """
    stmt = _insert_for(session, model).values(**values)
    # Prepare update dict without the conflict key
    update_values = {
        k: v for k, v in values.items()
        if k not in conflict_fields and k not in immutable_fields
    }
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_fields),
        set_=update_values
    )
    await session.execute(stmt)


async def insert_ignore(
    session: AsyncSession,
    model: Type[SQLModel],
    values: Dict[str, Any],
    conflict_fields: Sequence[str],
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING; True when a row was inserted"""
    stmt = _insert_for(session, model).values(**values).on_conflict_do_nothing(
        index_elements=list(conflict_fields)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
