# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Fluent query builder shared by the relational and document backends.

Builders only record intent into a :class:`QueryDescriptor`; compilation
happens when a terminal method runs.  A builder is single-use: once a
terminal has run, further calls raise :class:`QueryError`.
"""

from __future__ import annotations

import abc
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Self

from strata.core.exceptions import QueryError
from strata.query.descriptor import (
    JOIN_KINDS,
    Condition,
    Group,
    Join,
    QueryDescriptor,
    conditions_from_mapping,
    normalize_direction,
    normalize_operator,
)

if TYPE_CHECKING:
    from strata.storage.backend import DatabaseBackend

_MISSING: Any = object()


def build_condition(field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Condition | Group:
    """Normalise the three ``where`` call shapes into one tree node."""
    if isinstance(field, Mapping):
        if operator is not _MISSING:
            raise QueryError("where(mapping) takes no operator or value")
        return conditions_from_mapping(field)
    if operator is _MISSING:
        raise QueryError(f"where({field!r}) needs a value")
    if value is _MISSING:
        if operator is None:
            return Condition(field, "is null")
        return Condition(field, "=", operator)

    op = normalize_operator(operator)
    if op in ("in", "not in"):
        if isinstance(value, str | bytes) or not isinstance(value, Iterable):
            raise QueryError(f"{op!r} expects a list of values")
        value = list(value)
    elif op == "between":
        value = tuple(value)
        if len(value) != 2:
            raise QueryError("'between' expects exactly two values")
    elif op == "=" and value is None:
        op = "is null"
    elif op == "!=" and value is None:
        op = "is not null"
    return Condition(field, op, value)


class ConditionGroup:
    """Collects conditions for :meth:`QueryBuilder.where_any` / :meth:`QueryBuilder.where_all`."""

    def __init__(self, connector: str) -> None:
        self.group = Group("OR" if connector == "OR" else "AND")

    def where(self, field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Self:
        self.group.add(build_condition(field, operator, value))
        return self

    def where_in(self, field: str, values: Iterable[Any]) -> Self:
        return self.where(field, "in", values)

    def where_null(self, field: str) -> Self:
        self.group.add(Condition(field, "is null"))
        return self

    def where_not_null(self, field: str) -> Self:
        self.group.add(Condition(field, "is not null"))
        return self

    def where_any(self, build: Callable[[ConditionGroup], object]) -> Self:
        nested = ConditionGroup("OR")
        build(nested)
        self.group.add(nested.group)
        return self

    def where_all(self, build: Callable[[ConditionGroup], object]) -> Self:
        nested = ConditionGroup("AND")
        build(nested)
        self.group.add(nested.group)
        return self


class QueryBuilder(abc.ABC):
    """Chainable query against one table or collection.

    Args:
        backend: Backend that will run the compiled query.
        table: Target table (relational) or collection (document).
    """

    def __init__(self, backend: DatabaseBackend, table: str) -> None:
        self._backend = backend
        self._descriptor = QueryDescriptor(table=table)
        self._scope: Condition | Group | None = None
        self._consumed = False

    @property
    def backend(self) -> DatabaseBackend:
        return self._backend

    @property
    def table(self) -> str:
        return self._descriptor.table

    @property
    def descriptor(self) -> QueryDescriptor:
        return self._descriptor

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def where(self, field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Self:
        self._check_usable()
        self._and(build_condition(field, operator, value))
        return self

    def or_where(self, field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Self:
        """Combine as ``(everything so far) OR new``."""
        self._check_usable()
        node = build_condition(field, operator, value)
        root = self._descriptor.where
        if root.is_empty:
            root.add(node)
        else:
            self._descriptor.where = Group("OR", [root, node])
        return self

    def where_any(self, build: Callable[[ConditionGroup], object]) -> Self:
        """AND an explicit OR-group built by *build* onto the query."""
        self._check_usable()
        group = ConditionGroup("OR")
        build(group)
        self._and(group.group)
        return self

    def where_all(self, build: Callable[[ConditionGroup], object]) -> Self:
        self._check_usable()
        group = ConditionGroup("AND")
        build(group)
        self._and(group.group)
        return self

    def where_in(self, field: str, values: Iterable[Any]) -> Self:
        return self.where(field, "in", values)

    def where_not_in(self, field: str, values: Iterable[Any]) -> Self:
        return self.where(field, "not in", values)

    def where_null(self, field: str) -> Self:
        self._check_usable()
        self._and(Condition(field, "is null"))
        return self

    def where_not_null(self, field: str) -> Self:
        self._check_usable()
        self._and(Condition(field, "is not null"))
        return self

    def where_between(self, field: str, low: Any, high: Any) -> Self:
        return self.where(field, "between", (low, high))

    def where_like(self, field: str, pattern: str) -> Self:
        return self.where(field, "like", pattern)

    def scope_filter(self, node: Condition | Group | None) -> Self:
        """Set a condition ANDed at compile time, outside the user's tree."""
        self._scope = node
        return self

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    def order_by(self, field: str, direction: str | int = "ASC") -> Self:
        self._check_usable()
        self._descriptor.order.append((field, normalize_direction(direction)))
        return self

    def sort(self, spec: str | Mapping[str, str | int]) -> Self:
        """``sort("-created_at")`` or ``sort({"name": 1, "age": -1})``."""
        if isinstance(spec, str):
            if spec.startswith("-"):
                return self.order_by(spec[1:], "DESC")
            return self.order_by(spec.lstrip("+"), "ASC")
        for field, direction in spec.items():
            self.order_by(field, direction)
        return self

    def limit(self, count: int) -> Self:
        self._check_usable()
        if count < 0:
            raise QueryError("limit must be non-negative")
        self._descriptor.limit = count
        return self

    def offset(self, count: int) -> Self:
        self._check_usable()
        if count < 0:
            raise QueryError("offset must be non-negative")
        self._descriptor.offset = count
        return self

    skip = offset

    def select(self, *fields: str) -> Self:
        self._check_usable()
        self._descriptor.fields.extend(fields)
        return self

    def join(
        self,
        table: str,
        local_field: str,
        foreign_field: str,
        kind: str = "INNER",
        alias: str | None = None,
    ) -> Self:
        self._check_usable()
        kind = kind.upper()
        if kind not in JOIN_KINDS:
            raise QueryError(f"Unsupported join kind: {kind!r}")
        self._descriptor.joins.append(Join(table, local_field, foreign_field, kind, alias))
        return self

    def left_join(self, table: str, local_field: str, foreign_field: str, alias: str | None = None) -> Self:
        return self.join(table, local_field, foreign_field, "LEFT", alias)

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    async def get(self) -> list[dict[str, Any]]:
        return await self._run_get(self._finish())

    async def first(self) -> dict[str, Any] | None:
        descriptor = self._finish()
        descriptor.limit = 1
        rows = await self._run_get(descriptor)
        return rows[0] if rows else None

    async def count(self) -> int:
        return await self._run_count(self._finish())

    async def exists(self) -> bool:
        descriptor = self._finish()
        descriptor.limit = 1
        return bool(await self._run_get(descriptor))

    async def update(self, data: Mapping[str, Any]) -> int:
        """Set *data* on every matching row; return the affected count."""
        if not data:
            raise QueryError("update() needs at least one field")
        return await self._run_update(self._finish(), dict(data), {})

    async def increment(self, field: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        return await self._run_update(self._finish(), dict(extra or {}), {field: amount})

    async def decrement(self, field: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        return await self.increment(field, -amount, extra)

    async def delete(self) -> int:
        return await self._run_delete(self._finish())

    async def distinct(self, field: str) -> list[Any]:
        return await self._run_distinct(self._finish(), field)

    def to_query(self) -> Any:
        """Compile without executing or consuming the builder."""
        self._check_usable()
        return self._compile(self._scoped())

    def signature(self) -> str:
        """Stable text identifying the compiled read query, used for cache keys."""
        self._check_usable()
        return self._compile(self._scoped()).signature()

    def mark_consumed(self) -> None:
        self._consumed = True

    @property
    def consumed(self) -> bool:
        return self._consumed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _and(self, node: Condition | Group) -> None:
        root = self._descriptor.where
        if root.connector != "AND":
            root = Group("AND", [root])
            self._descriptor.where = root
        root.add(node)

    def _check_usable(self) -> None:
        if self._consumed:
            raise QueryError(
                f"Query on {self._descriptor.table!r} was already executed; build a new one"
            )

    def _scoped(self) -> QueryDescriptor:
        return self._descriptor.filtered(self._scope)

    def _finish(self) -> QueryDescriptor:
        self._check_usable()
        self._consumed = True
        return self._scoped()

    @abc.abstractmethod
    def _compile(self, descriptor: QueryDescriptor) -> Any: ...

    @abc.abstractmethod
    async def _run_get(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    async def _run_count(self, descriptor: QueryDescriptor) -> int: ...

    @abc.abstractmethod
    async def _run_update(
        self,
        descriptor: QueryDescriptor,
        values: dict[str, Any],
        increments: dict[str, int | float],
    ) -> int: ...

    @abc.abstractmethod
    async def _run_delete(self, descriptor: QueryDescriptor) -> int: ...

    @abc.abstractmethod
    async def _run_distinct(self, descriptor: QueryDescriptor, field: str) -> list[Any]: ...
