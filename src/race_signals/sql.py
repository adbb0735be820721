from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession


def _statement(sql: str, expanding: Iterable[str] = ()):
    stmt = text(sql)
    names = list(expanding)
    if names:
        stmt = stmt.bindparams(*(bindparam(n, expanding=True) for n in names))
    return stmt


async def execute(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> None:
    await session.execute(text(sql), params or {})


async def fetch_all(
    session: AsyncSession,
    sql: str,
    params: dict[str, Any] | None = None,
    *,
    expanding: Iterable[str] = (),
) -> list[dict[str, Any]]:
    """Run a parameterised query; names in ``expanding`` bind lists to ``IN :name``."""
    res = await session.execute(_statement(sql, expanding), params or {})
    return [dict(r._mapping) for r in res.fetchall()]


async def fetch_one(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
    res = await session.execute(text(sql), params or {})
    row = res.fetchone()
    return dict(row._mapping) if row else None
