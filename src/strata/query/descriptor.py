# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Backend-agnostic query description.

A :class:`QueryDescriptor` is the intermediate form produced by the fluent
builders and consumed by the SQL and MongoDB compilers.  Conditions form a
tree of :class:`Group` nodes (AND / OR) with :class:`Condition` leaves.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from strata.core.exceptions import QueryError

Connector = Literal["AND", "OR"]
Direction = Literal["ASC", "DESC"]

OPERATORS: frozenset[str] = frozenset(
    {
        "=",
        "!=",
        ">",
        ">=",
        "<",
        "<=",
        "in",
        "not in",
        "like",
        "not like",
        "between",
        "is null",
        "is not null",
    }
)

OPERATOR_ALIASES: dict[str, str] = {
    "==": "=",
    "<>": "!=",
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "nin": "not in",
    "$eq": "=",
    "$ne": "!=",
    "$gt": ">",
    "$gte": ">=",
    "$lt": "<",
    "$lte": "<=",
    "$in": "in",
    "$nin": "not in",
    "$like": "like",
}

JOIN_KINDS = frozenset({"INNER", "LEFT", "RIGHT", "FULL"})


def normalize_operator(op: str) -> str:
    key = " ".join(str(op).strip().lower().split())
    key = OPERATOR_ALIASES.get(key, key)
    if key not in OPERATORS:
        raise QueryError(f"Unsupported operator: {op!r}")
    return key


def normalize_direction(direction: str | int) -> Direction:
    if isinstance(direction, int):
        return "DESC" if direction < 0 else "ASC"
    value = str(direction).strip().upper()
    if value in ("ASC", "DESC"):
        return value  # type: ignore[return-value]
    raise QueryError(f"Invalid sort direction: {direction!r}")


@dataclass(frozen=True, slots=True)
class Condition:
    field: str
    operator: str
    value: Any = None


@dataclass(slots=True)
class Group:
    connector: Connector = "AND"
    children: list[Condition | Group] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.children

    def add(self, node: Condition | Group) -> None:
        if isinstance(node, Group) and node.is_empty:
            return
        self.children.append(node)


@dataclass(frozen=True, slots=True)
class Join:
    table: str
    local_field: str
    foreign_field: str
    kind: str = "INNER"
    alias: str | None = None

    @property
    def target(self) -> str:
        return self.alias or self.table


@dataclass(slots=True)
class QueryDescriptor:
    table: str
    where: Group = field(default_factory=Group)
    order: list[tuple[str, Direction]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    fields: list[str] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)

    def filtered(self, extra: Condition | Group | None) -> QueryDescriptor:
        """Return a copy whose conditions are ``(existing) AND extra``."""
        if extra is None or (isinstance(extra, Group) and extra.is_empty):
            return self
        root = Group("AND")
        root.add(self.where)
        root.add(extra)
        return replace(self, where=root)


def conditions_from_mapping(mapping: Mapping[str, Any]) -> Group:
    """Translate a ``{field: value | {"$op": value}}`` mapping into an AND group.

    ``$or`` / ``$and`` keys take a list of nested mappings.  A ``None``
    value means "is null"; ``{"$exists": bool}`` maps to a null check.
    """
    group = Group("AND")
    for key, value in mapping.items():
        if key in ("$or", "$and"):
            nested = Group("OR" if key == "$or" else "AND")
            for item in value:
                nested.add(conditions_from_mapping(item))
            group.add(nested)
        elif isinstance(value, Mapping) and value and all(str(k).startswith("$") for k in value):
            for op, operand in value.items():
                if op == "$exists":
                    group.add(Condition(key, "is not null" if operand else "is null"))
                elif op == "$between":
                    group.add(Condition(key, "between", tuple(operand)))
                else:
                    group.add(Condition(key, normalize_operator(op), operand))
        elif value is None:
            group.add(Condition(key, "is null"))
        else:
            group.add(Condition(key, "=", value))
    return group


def like_to_regex(pattern: str) -> str:
    """Translate a SQL ``LIKE`` pattern into an anchored regular expression."""
    out = ["^"]
    for ch in pattern:
        if ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        elif ch in r".^$*+?{}[]\|()":
            out.append("\\" + ch)
        else:
            out.append(ch)
    out.append("$")
    return "".join(out)
