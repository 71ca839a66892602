from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_on_conflict_do_nothing(db: AsyncSession, model, values: dict, conflict_columns: list[str]) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING on the session's dialect.
    Returns True when the row was inserted, False when the unique key already existed.
    """
    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    statement = insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    result = await db.execute(statement)
    return result.rowcount == 1
