"""Row store capability and its SQLAlchemy Core implementation.

Rows are plain dicts keyed by column name. Every call is a single statement in
its own transaction; multi-row consistency is the caller's job (see the
binding saga). ``update`` returns the rows it matched, so a guarded update
that matched nothing is observable as an empty list.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from gifts.db import models  # noqa: F401
from gifts.db.base import Base
from gifts.rowstore.errors import ConstraintViolation, TransportError, UniqueViolation
from gifts.rowstore.filters import Order, Where, compile_where

logger = structlog.get_logger()

Row = dict[str, Any]

_CONSTRAINT_NAME_RE = re.compile(r'constraint "([^"]+)"')
_SQLITE_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: ([\w., ]+)")


class RowStore(ABC):
    """Table-addressed CRUD over dict rows."""

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        where: Where = None,
        columns: Sequence[str] | None = None,
        order_by: Sequence[Order] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Row]:
        """Return matching rows."""

    async def get(self, table: str, *, where: Where, columns: Sequence[str] | None = None) -> Row | None:
        """Return the first matching row or None."""
        rows = await self.select(table, where=where, columns=columns, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def count(self, table: str, *, where: Where = None) -> int:
        """Count matching rows."""

    @abstractmethod
    async def insert(self, table: str, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> list[Row]:
        """Insert one or many rows and return them as stored."""

    @abstractmethod
    async def update(self, table: str, values: Mapping[str, Any], *, where: Where) -> list[Row]:
        """Update matching rows and return them; empty when nothing matched."""

    @abstractmethod
    async def upsert(
        self,
        table: str,
        values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[Row]:
        """Insert, or update the supplied columns when ``conflict`` columns collide."""

    @abstractmethod
    async def delete(self, table: str, *, where: Where) -> list[Row]:
        """Delete matching rows and return them."""


def _as_list(values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(values, Mapping):
        return [dict(values)]
    return [dict(v) for v in values]


def _constraint_name(message: str) -> str | None:
    match = _CONSTRAINT_NAME_RE.search(message)
    if match:
        return match.group(1)
    match = _SQLITE_UNIQUE_RE.search(message)
    if match:
        return match.group(1).strip()
    return None


def translate_error(exc: BaseException) -> Exception:
    """Map a driver-level failure onto the row store taxonomy."""
    if isinstance(exc, IntegrityError):
        message = str(exc.orig) if exc.orig is not None else str(exc)
        lowered = message.lower()
        if "unique" in lowered or "duplicate key" in lowered:
            return UniqueViolation(message, constraint=_constraint_name(message))
        return ConstraintViolation(message, constraint=_constraint_name(message))
    if isinstance(exc, (OperationalError, InterfaceError)):
        return TransportError(str(exc.orig) if exc.orig is not None else str(exc))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransportError(str(exc))
    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return TransportError(str(exc) or exc.__class__.__name__)
    return exc  # type: ignore[return-value]


class SqlRowStore(RowStore):
    """``RowStore`` on an async SQLAlchemy engine (Postgres in production, SQLite in tests)."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            msg = f"Unknown table: {name}"
            raise ValueError(msg) from None

    async def _execute(self, statement: Any, params: list[dict[str, Any]] | None = None) -> list[Row]:  # noqa: ANN401
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement, params)
                return [dict(row) for row in result.mappings().all()]
        except (DBAPIError, OSError, asyncio.TimeoutError) as exc:
            translated = translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def select(
        self,
        table: str,
        *,
        where: Where = None,
        columns: Sequence[str] | None = None,
        order_by: Sequence[Order] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Row]:
        t = self._table(table)
        cols = [t.c[c] for c in columns] if columns else [t]
        stmt = select(*cols)
        clause = compile_where(t, where)
        if clause is not None:
            stmt = stmt.where(clause)
        for order in order_by:
            col = t.c[order.column]
            stmt = stmt.order_by(col.desc() if order.descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return await self._execute(stmt)

    async def count(self, table: str, *, where: Where = None) -> int:
        t = self._table(table)
        stmt = select(func.count()).select_from(t)
        clause = compile_where(t, where)
        if clause is not None:
            stmt = stmt.where(clause)
        rows = await self._execute(stmt)
        return int(next(iter(rows[0].values()))) if rows else 0

    async def insert(self, table: str, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> list[Row]:
        t = self._table(table)
        rows = _as_list(values)
        if not rows:
            return []
        stmt = insert(t).returning(*t.c, sort_by_parameter_order=True)
        return await self._execute(stmt, rows)

    async def update(self, table: str, values: Mapping[str, Any], *, where: Where) -> list[Row]:
        t = self._table(table)
        stmt = update(t).values(dict(values)).returning(*t.c)
        clause = compile_where(t, where)
        if clause is not None:
            stmt = stmt.where(clause)
        return await self._execute(stmt)

    async def upsert(
        self,
        table: str,
        values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[Row]:
        t = self._table(table)
        rows = _as_list(values)
        if not rows:
            return []
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(t)
        elif dialect == "sqlite":
            stmt = sqlite.insert(t)
        else:
            msg = f"Upsert is not supported on {dialect}"
            raise NotImplementedError(msg)

        primary = {c.name for c in t.primary_key.columns}
        protected = set(conflict) | primary | {"created_at"}
        updatable = [k for k in rows[0] if k not in protected]
        set_ = {k: stmt.excluded[k] for k in updatable}
        if "updated_at" in t.c and "updated_at" not in set_:
            set_["updated_at"] = stmt.excluded.updated_at
        if set_:
            stmt = stmt.on_conflict_do_update(index_elements=list(conflict), set_=set_)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict))
        return await self._execute(stmt.returning(*t.c, sort_by_parameter_order=True), rows)

    async def delete(self, table: str, *, where: Where) -> list[Row]:
        t = self._table(table)
        stmt = delete(t).returning(*t.c)
        clause = compile_where(t, where)
        if clause is not None:
            stmt = stmt.where(clause)
        return await self._execute(stmt)
