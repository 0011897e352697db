from typing import Any, Dict, List, Type

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Base

# Keeps multi-row VALUES under SQLite's bound-parameter limit
INSERT_CHUNK_SIZE = 100


def _insert_for(session: AsyncSession, model: Type[Base]):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Conditional insert not supported for {dialect}")


async def insert_if_absent(
    session: AsyncSession, model: Type[Base], rows: List[Dict[str, Any]]
) -> int:
    """
    Insert ``rows`` into ``model``'s table, skipping any row that collides with a
    unique constraint or unique index. Returns how many rows were actually written.

    Uses ``INSERT ... ON CONFLICT DO NOTHING`` so concurrent callers racing on the
    same natural key never see a duplicate-key error. Every row must carry the
    same keys, including the primary key.
    """
    inserted = 0
    for start in range(0, len(rows), INSERT_CHUNK_SIZE):
        chunk = rows[start : start + INSERT_CHUNK_SIZE]
        statement = _insert_for(session, model).values(chunk).on_conflict_do_nothing()
        result = await session.execute(statement)
        inserted += max(result.rowcount or 0, 0)
    return inserted
