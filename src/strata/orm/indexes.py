# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Index declarations for models.

Indexes are applied explicitly through ``Model.create_indexes()``; every
generated statement is idempotent (``IF NOT EXISTS`` on SQL, named indexes
on MongoDB).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from strata.core.constants import BackendType, IndexKind
from strata.core.exceptions import QueryError
from strata.query.sql import quote_identifier

IndexKey = str | tuple[str, int | str]


@dataclass(frozen=True, slots=True, init=False)
class Index:
    """An index over one or more fields.

    ``fields`` entries are a field name, or ``(name, direction)`` where
    direction is ``1``/``-1`` (or ``"2d"``/``"2dsphere"`` for MongoDB
    geospatial keys).
    """

    fields: tuple[IndexKey, ...]
    unique: bool
    kind: IndexKind
    name: str | None
    sparse: bool

    def __init__(
        self,
        fields: Sequence[IndexKey] | str,
        *,
        unique: bool = False,
        kind: IndexKind | str = IndexKind.ORDINARY,
        name: str | None = None,
        sparse: bool = False,
    ) -> None:
        keys = (fields,) if isinstance(fields, str) else tuple(fields)
        if not keys:
            raise ValueError("an index needs at least one field")
        kind = IndexKind(kind)
        if kind is IndexKind.UNIQUE:
            unique = True
        object.__setattr__(self, "fields", keys)
        object.__setattr__(self, "unique", unique)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "sparse", sparse)

    @property
    def field_names(self) -> list[str]:
        return [k if isinstance(k, str) else k[0] for k in self.fields]

    def resolved_name(self, table: str) -> str:
        if self.name:
            return self.name
        if self.unique:
            suffix = "uniq"
        elif self.kind is IndexKind.TEXT:
            suffix = "text"
        elif self.kind is IndexKind.GEOSPATIAL:
            suffix = "geo"
        else:
            suffix = "idx"
        return f"{table}_{'_'.join(self.field_names)}_{suffix}"

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    def create_sql(self, table: str, dialect: BackendType) -> str:
        name = quote_identifier(self.resolved_name(table))
        target = quote_identifier(table)

        if self.kind is IndexKind.GEOSPATIAL:
            raise QueryError(f"Geospatial indexes are not supported on {dialect}")
        if self.kind is IndexKind.TEXT and dialect is BackendType.POSTGRESQL:
            document = " || ' ' || ".join(
                f"coalesce({quote_identifier(f)}, '')" for f in self.field_names
            )
            return (
                f"CREATE INDEX IF NOT EXISTS {name} ON {target} "
                f"USING GIN (to_tsvector('simple', {document}))"
            )

        columns = []
        for key in self.fields:
            if isinstance(key, str):
                columns.append(quote_identifier(key))
            else:
                column, direction = key
                order = "DESC" if direction in (-1, "desc", "DESC") else "ASC"
                columns.append(f"{quote_identifier(column)} {order}")
        unique = "UNIQUE " if self.unique else ""
        return f"CREATE {unique}INDEX IF NOT EXISTS {name} ON {target} ({', '.join(columns)})"

    def drop_sql(self, table: str) -> str:
        return f"DROP INDEX IF EXISTS {quote_identifier(self.resolved_name(table))}"

    # ------------------------------------------------------------------
    # MongoDB
    # ------------------------------------------------------------------

    def mongo_keys(self) -> list[tuple[str, int | str]]:
        keys: list[tuple[str, int | str]] = []
        for key in self.fields:
            column, direction = (key, 1) if isinstance(key, str) else key
            if self.kind is IndexKind.TEXT:
                direction = "text"
            elif self.kind is IndexKind.GEOSPATIAL and direction not in ("2d", "2dsphere"):
                direction = "2dsphere"
            keys.append((column, direction))
        return keys

    def mongo_options(self, table: str) -> dict[str, Any]:
        options: dict[str, Any] = {"name": self.resolved_name(table)}
        if self.unique:
            options["unique"] = True
        if self.sparse:
            options["sparse"] = True
        return options
