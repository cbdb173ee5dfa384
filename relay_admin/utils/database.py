"""Thin async helpers over the Supabase postgrest builder.

Every filter is an equality match on ``column -> value``. Writes log the
table name and re-raise so callers decide whether the failure is fatal
(decision log) or best-effort (helpdesk sync).
"""

from typing import Any, Optional

from supabase import AsyncClient

from .logger import logger


def _rows(response) -> list[dict]:
    return getattr(response, "data", None) or []


def _where(query, match: Optional[dict]):
    for column, value in (match or {}).items():
        query = query.eq(column, value)
    return query


async def insert_data(supabase: AsyncClient, table_name: str, data: dict) -> list[dict]:
    """Insert one row and return the rows the store echoed back."""
    try:
        response = await supabase.table(table_name).insert(data).execute()
    except Exception as exc:
        logger.error("db.insert_failed", extra={"table": table_name, "error": str(exc)})
        raise
    return _rows(response)


async def update_data(supabase: AsyncClient, table_name: str, values: dict, match: dict) -> list[dict]:
    try:
        response = await _where(supabase.table(table_name).update(values), match).execute()
    except Exception as exc:
        logger.error("db.update_failed", extra={"table": table_name, "error": str(exc)})
        raise
    return _rows(response)


async def delete_data(supabase: AsyncClient, table_name: str, match: dict) -> list[dict]:
    """Delete matching rows and return them. Refuses an empty match."""
    if not match:
        raise ValueError("delete_data requires at least one filter")
    try:
        response = await _where(supabase.table(table_name).delete(), match).execute()
    except Exception as exc:
        logger.error("db.delete_failed", extra={"table": table_name, "error": str(exc)})
        raise
    return _rows(response)


async def query_many(
    supabase: AsyncClient,
    table_name: str,
    match: dict | None = None,
    order_by: tuple | None = None,
    select_fields: str = "*",
    limit: int | None = None,
) -> list[dict]:
    """Rows matching *match*, optionally ordered by ``(column, desc)`` and capped at *limit*."""
    query = _where(supabase.table(table_name).select(select_fields), match)
    if order_by:
        column, desc = order_by
        query = query.order(column, desc=desc)
    if limit:
        query = query.limit(limit)
    return _rows(await query.execute())


async def query_one(supabase: AsyncClient, table_name: str, match: dict | None = None) -> Any:
    rows = await query_many(supabase, table_name, match=match, limit=1)
    return rows[0] if rows else None
