"""Backend-neutral row filters and ordering.

Filters name columns as strings and compile to SQLAlchemy clauses against a
concrete ``Table`` only inside the store.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import Table, and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def compile(self, table: Table) -> ColumnElement[bool]:
        col = table.c[self.column]
        if self.op == "eq":
            return col == self.value
        if self.op == "in":
            values = list(self.value)
            return col.in_(values) if values else false()
        if self.op == "gte":
            return col >= self.value
        if self.op == "gt":
            return col > self.value
        if self.op == "lte":
            return col <= self.value
        if self.op == "lt":
            return col < self.value
        if self.op == "is_null":
            return col.is_(None)
        msg = f"Unknown filter operator: {self.op}"
        raise ValueError(msg)


@dataclass(frozen=True)
class AnyOf:
    filters: tuple[Clause, ...]

    def compile(self, table: Table) -> ColumnElement[bool]:
        if not self.filters:
            return false()
        return or_(*(f.compile(table) for f in self.filters))


@dataclass(frozen=True)
class AllOf:
    filters: tuple[Clause, ...]

    def compile(self, table: Table) -> ColumnElement[bool]:
        if not self.filters:
            return true()
        return and_(*(f.compile(table) for f in self.filters))


Clause = Union[Filter, AnyOf, AllOf]
Where = Union[Clause, Sequence[Clause], None]


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


def eq(column: str, value: Any) -> Filter:  # noqa: ANN401
    return Filter(column, "eq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def gte(column: str, value: Any) -> Filter:  # noqa: ANN401
    return Filter(column, "gte", value)


def gt(column: str, value: Any) -> Filter:  # noqa: ANN401
    return Filter(column, "gt", value)


def lte(column: str, value: Any) -> Filter:  # noqa: ANN401
    return Filter(column, "lte", value)


def lt(column: str, value: Any) -> Filter:  # noqa: ANN401
    return Filter(column, "lt", value)


def is_null(column: str) -> Filter:
    return Filter(column, "is_null")


def any_of(*filters: Clause) -> AnyOf:
    return AnyOf(tuple(filters))


def all_of(*filters: Clause) -> AllOf:
    return AllOf(tuple(filters))


def asc(column: str) -> Order:
    return Order(column)


def desc(column: str) -> Order:
    return Order(column, descending=True)


def compile_where(table: Table, where: Where) -> ColumnElement[bool] | None:
    """AND together ``where`` (a clause or a sequence of clauses)."""
    if where is None:
        return None
    if isinstance(where, (Filter, AnyOf, AllOf)):
        return where.compile(table)
    clauses = [w.compile(table) for w in where]
    if not clauses:
        return None
    return and_(*clauses)
