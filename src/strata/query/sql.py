# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Relational compiler and builder.

Compiles a :class:`QueryDescriptor` into parameterized SQL with ``?``
placeholders.  Every value is bound; identifiers are validated and
double-quoted, so user input never reaches the statement text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from strata.core.constants import BackendType
from strata.core.exceptions import QueryError
from strata.query.base import QueryBuilder
from strata.query.descriptor import Condition, Group, QueryDescriptor

if TYPE_CHECKING:
    from strata.storage.backend import DatabaseBackend

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_COMPARISONS = {"=": "=", "!=": "<>", ">": ">", ">=": ">=", "<": "<", "<=": "<="}


def quote_identifier(name: str) -> str:
    """Validate and double-quote ``name`` or ``table.name``.

    Raises:
        QueryError: If *name* is not a plain identifier.
    """
    if name == "*":
        return name
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise QueryError(f"Invalid identifier: {name!r}")
    return ".".join(f'"{part}"' for part in name.split("."))


@dataclass(frozen=True, slots=True)
class SQLQuery:
    statement: str
    params: tuple[Any, ...] = ()

    def signature(self) -> str:
        return json.dumps([self.statement, list(self.params)], default=str)


class SQLCompiler:
    """Turns descriptors into :class:`SQLQuery` objects for one dialect."""

    def __init__(self, dialect: BackendType = BackendType.SQLITE) -> None:
        self.dialect = BackendType(dialect)

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def where_clause(self, group: Group) -> tuple[str, list[Any]]:
        params: list[Any] = []
        text = self._node(group, params)
        return text, params

    def _node(self, node: Condition | Group, params: list[Any]) -> str:
        if isinstance(node, Condition):
            return self._condition(node, params)
        parts = [self._node(child, params) for child in node.children]
        parts = [p for p in parts if p]
        if not parts:
            return ""
        if len(parts) == 1:
            return parts[0]
        return "(" + f" {node.connector} ".join(parts) + ")"

    def _condition(self, cond: Condition, params: list[Any]) -> str:
        column = quote_identifier(cond.field)
        op = cond.operator

        if op in _COMPARISONS:
            if cond.value is None:
                return f"{column} IS NULL" if op == "=" else f"{column} IS NOT NULL"
            params.append(cond.value)
            return f"{column} {_COMPARISONS[op]} ?"
        if op in ("in", "not in"):
            values = list(cond.value or [])
            if not values:
                # Empty IN matches nothing; empty NOT IN matches everything.
                return "1 = 0" if op == "in" else "1 = 1"
            params.extend(values)
            marks = ", ".join("?" for _ in values)
            return f"{column} {'IN' if op == 'in' else 'NOT IN'} ({marks})"
        if op in ("like", "not like"):
            params.append(cond.value)
            keyword = "ILIKE" if self.dialect is BackendType.POSTGRESQL else "LIKE"
            return f"{column} {'NOT ' if op == 'not like' else ''}{keyword} ?"
        if op == "between":
            low, high = cond.value
            params.extend((low, high))
            return f"{column} BETWEEN ? AND ?"
        if op == "is null":
            return f"{column} IS NULL"
        if op == "is not null":
            return f"{column} IS NOT NULL"
        raise QueryError(f"Unsupported operator: {op!r}")

    def _from(self, desc: QueryDescriptor) -> str:
        text = f"FROM {quote_identifier(desc.table)}"
        for join in desc.joins:
            target = quote_identifier(join.table)
            if join.alias:
                target += f" AS {quote_identifier(join.alias)}"
            left = f"{quote_identifier(desc.table)}.{quote_identifier(join.local_field)}"
            right = f"{quote_identifier(join.target)}.{quote_identifier(join.foreign_field)}"
            text += f" {join.kind} JOIN {target} ON {left} = {right}"
        return text

    def _where(self, desc: QueryDescriptor, params: list[Any]) -> str:
        clause = self._node(desc.where, params)
        return f" WHERE {clause}" if clause else ""

    def _no_joins(self, desc: QueryDescriptor, verb: str) -> None:
        if desc.joins:
            raise QueryError(f"{verb} does not support joins")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def select(self, desc: QueryDescriptor) -> SQLQuery:
        params: list[Any] = []
        columns = ", ".join(quote_identifier(f) for f in desc.fields) if desc.fields else "*"
        sql = f"SELECT {columns} {self._from(desc)}{self._where(desc, params)}"
        if desc.order:
            sql += " ORDER BY " + ", ".join(
                f"{quote_identifier(field)} {direction}" for field, direction in desc.order
            )
        if desc.limit is not None:
            sql += " LIMIT ?"
            params.append(desc.limit)
        if desc.offset is not None:
            if desc.limit is None and self.dialect is BackendType.SQLITE:
                sql += " LIMIT -1"
            sql += " OFFSET ?"
            params.append(desc.offset)
        return SQLQuery(sql, tuple(params))

    def count(self, desc: QueryDescriptor) -> SQLQuery:
        params: list[Any] = []
        sql = f'SELECT COUNT(*) AS "count" {self._from(desc)}{self._where(desc, params)}'
        return SQLQuery(sql, tuple(params))

    def distinct(self, desc: QueryDescriptor, field: str) -> SQLQuery:
        params: list[Any] = []
        column = quote_identifier(field)
        sql = f'SELECT DISTINCT {column} AS "value" {self._from(desc)}{self._where(desc, params)}'
        sql += ' ORDER BY "value"'
        return SQLQuery(sql, tuple(params))

    def insert(self, table: str, data: Mapping[str, Any], *, returning: bool = True) -> SQLQuery:
        table_sql = quote_identifier(table)
        if not data:
            sql = f"INSERT INTO {table_sql} DEFAULT VALUES"
        else:
            columns = ", ".join(quote_identifier(c) for c in data)
            marks = ", ".join("?" for _ in data)
            sql = f"INSERT INTO {table_sql} ({columns}) VALUES ({marks})"
        if returning:
            sql += " RETURNING *"
        return SQLQuery(sql, tuple(data.values()))

    def update(
        self,
        desc: QueryDescriptor,
        values: Mapping[str, Any],
        increments: Mapping[str, int | float] | None = None,
    ) -> SQLQuery:
        self._no_joins(desc, "UPDATE")
        increments = increments or {}
        if not values and not increments:
            raise QueryError("UPDATE needs at least one field")
        params: list[Any] = []
        assignments: list[str] = []
        for column, value in values.items():
            assignments.append(f"{quote_identifier(column)} = ?")
            params.append(value)
        for column, amount in increments.items():
            quoted = quote_identifier(column)
            assignments.append(f"{quoted} = COALESCE({quoted}, 0) + ?")
            params.append(amount)
        sql = f"UPDATE {quote_identifier(desc.table)} SET {', '.join(assignments)}"
        sql += self._where(desc, params)
        return SQLQuery(sql, tuple(params))

    def delete(self, desc: QueryDescriptor) -> SQLQuery:
        self._no_joins(desc, "DELETE")
        params: list[Any] = []
        sql = f"DELETE FROM {quote_identifier(desc.table)}{self._where(desc, params)}"
        return SQLQuery(sql, tuple(params))

    def truncate(self, table: str) -> SQLQuery:
        if self.dialect is BackendType.POSTGRESQL:
            return SQLQuery(f"TRUNCATE TABLE {quote_identifier(table)}")
        return SQLQuery(f"DELETE FROM {quote_identifier(table)}")

    def list_indexes(self, table: str) -> SQLQuery:
        if self.dialect is BackendType.POSTGRESQL:
            return SQLQuery(
                'SELECT indexname AS "name", indexdef AS "definition" FROM pg_indexes WHERE tablename = ?',
                (table,),
            )
        return SQLQuery(
            "SELECT name, sql AS definition FROM sqlite_master WHERE type = 'index' AND tbl_name = ?",
            (table,),
        )


class SQLQueryBuilder(QueryBuilder):
    """Builder whose terminals run compiled SQL on a relational backend."""

    def __init__(self, backend: DatabaseBackend, table: str) -> None:
        super().__init__(backend, table)
        quote_identifier(table)
        self.compiler = SQLCompiler(backend.backend_type)

    def _compile(self, descriptor: QueryDescriptor) -> SQLQuery:
        return self.compiler.select(descriptor)

    async def _run_get(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        q = self.compiler.select(descriptor)
        return await self._backend.query(q.statement, q.params)

    async def _run_count(self, descriptor: QueryDescriptor) -> int:
        q = self.compiler.count(descriptor)
        rows = await self._backend.query(q.statement, q.params)
        return int(rows[0]["count"]) if rows else 0

    async def _run_update(
        self,
        descriptor: QueryDescriptor,
        values: dict[str, Any],
        increments: dict[str, int | float],
    ) -> int:
        q = self.compiler.update(descriptor, values, increments)
        result = await self._backend.execute(q.statement, q.params)
        return result.rowcount

    async def _run_delete(self, descriptor: QueryDescriptor) -> int:
        q = self.compiler.delete(descriptor)
        result = await self._backend.execute(q.statement, q.params)
        return result.rowcount

    async def _run_distinct(self, descriptor: QueryDescriptor, field: str) -> list[Any]:
        q = self.compiler.distinct(descriptor, field)
        rows = await self._backend.query(q.statement, q.params)
        return [row["value"] for row in rows]
