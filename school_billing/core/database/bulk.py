"""Bulk insert that lets the database drop rows violating a unique index."""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 500

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def insert_ignoring_conflicts(
    db: AsyncSession,
    table: Table,
    rows: Sequence[dict[str, Any]],
    returning: Sequence[str],
) -> list[dict[str, Any]]:
    """
    Insert rows with ON CONFLICT DO NOTHING and return the rows actually stored.

    Rows rejected by any unique constraint are silently dropped by the database,
    so the caller can compare the returned rows against what it submitted to find
    the duplicates. The rest of the batch is unaffected by a conflict.

    Args:
        db: Database session (not committed here)
        table: Target table
        rows: Column/value mappings, all with the same keys
        returning: Column names to return for each stored row

    Returns:
        One dict per stored row with the ``returning`` columns
    """
    if not rows:
        return []

    dialect = db.get_bind().dialect.name
    insert_fn = _INSERT_BY_DIALECT.get(dialect)
    if insert_fn is None:
        raise NotImplementedError(f"Bulk insert with conflict skipping is not supported on {dialect}")

    columns = [table.c[name] for name in returning]
    stored: list[dict[str, Any]] = []
    for start in range(0, len(rows), INSERT_CHUNK_SIZE):
        chunk = list(rows[start : start + INSERT_CHUNK_SIZE])
        stmt = insert_fn(table).values(chunk).on_conflict_do_nothing().returning(*columns)
        result = await db.execute(stmt)
        stored.extend(dict(row._mapping) for row in result.all())

    if len(stored) < len(rows):
        logger.info(
            "Insert into %s: %d of %d rows skipped by unique constraints",
            table.name,
            len(rows) - len(stored),
            len(rows),
        )
    return stored
