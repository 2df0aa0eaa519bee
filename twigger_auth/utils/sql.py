from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def insert_or_ignore(
    db: AsyncSession, table: Table, values: dict[str, Any], conflict_columns: list[str]
) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if a row was written."""
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise ValueError(f"insert_or_ignore is not supported on {dialect}") from None

    stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    result = await db.execute(stmt)
    return result.rowcount > 0
