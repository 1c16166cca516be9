# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Document compiler and builder.

Compiles a :class:`QueryDescriptor` into a MongoDB filter document with
sort, skip, limit and projection, or into an aggregation pipeline when
joins (``$lookup``) are present.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from strata.core.exceptions import QueryError
from strata.query.base import QueryBuilder
from strata.query.descriptor import Condition, Group, QueryDescriptor, like_to_regex
from strata.storage.backend import DocumentCommand

try:
    from bson import ObjectId  # type: ignore[import-not-found]
except ImportError:  # pragma: no cover
    ObjectId = None  # type: ignore[assignment,misc]

if TYPE_CHECKING:
    from strata.storage.backend import DatabaseBackend

_COMPARISONS = {"!=": "$ne", ">": "$gt", ">=": "$gte", "<": "$lt", "<=": "$lte"}


def coerce_object_id(value: Any) -> Any:
    """Turn 24-hex strings into ``ObjectId`` so ``_id`` lookups match."""
    if ObjectId is not None and isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


@dataclass(frozen=True, slots=True)
class MongoQuery:
    collection: str
    filter: dict[str, Any] = field(default_factory=dict)
    sort: list[tuple[str, int]] = field(default_factory=list)
    skip: int | None = None
    limit: int | None = None
    projection: dict[str, int] | None = None
    pipeline: list[dict[str, Any]] | None = None

    def command(self) -> DocumentCommand:
        if self.pipeline is not None:
            return DocumentCommand("aggregate", self.collection, document=self.pipeline)
        options: dict[str, Any] = {}
        if self.sort:
            options["sort"] = self.sort
        if self.skip:
            options["skip"] = self.skip
        if self.limit:
            options["limit"] = self.limit
        if self.projection:
            options["projection"] = self.projection
        return DocumentCommand("find", self.collection, filter=self.filter, options=options)

    def signature(self) -> str:
        return json.dumps(
            {
                "collection": self.collection,
                "filter": self.filter,
                "sort": self.sort,
                "skip": self.skip,
                "limit": self.limit,
                "projection": self.projection,
                "pipeline": self.pipeline,
            },
            default=str,
            sort_keys=True,
        )


class MongoCompiler:
    """Turns descriptors into filters, find options and pipelines."""

    def filter(self, group: Group) -> dict[str, Any]:
        return self._node(group)

    def _node(self, node: Condition | Group) -> dict[str, Any]:
        if isinstance(node, Condition):
            return self._condition(node)
        parts = [self._node(child) for child in node.children]
        parts = [p for p in parts if p]
        if not parts:
            return {}
        if len(parts) == 1:
            return parts[0]
        return {"$and" if node.connector == "AND" else "$or": parts}

    def _condition(self, cond: Condition) -> dict[str, Any]:
        name = cond.field
        op = cond.operator
        value = cond.value
        if name == "_id":
            if isinstance(value, list | tuple):
                value = [coerce_object_id(v) for v in value]
            else:
                value = coerce_object_id(value)

        if op == "=":
            return {name: value}
        if op in _COMPARISONS:
            return {name: {_COMPARISONS[op]: value}}
        if op == "in":
            return {name: {"$in": list(value or [])}}
        if op == "not in":
            return {name: {"$nin": list(value or [])}}
        if op == "like":
            return {name: {"$regex": like_to_regex(value), "$options": "i"}}
        if op == "not like":
            return {name: {"$not": {"$regex": like_to_regex(value), "$options": "i"}}}
        if op == "between":
            low, high = value
            return {name: {"$gte": low, "$lte": high}}
        if op == "is null":
            return {name: None}
        if op == "is not null":
            return {name: {"$ne": None}}
        raise QueryError(f"Unsupported operator: {op!r}")

    def select(self, desc: QueryDescriptor) -> MongoQuery:
        match = self.filter(desc.where)
        sort = [(f, -1 if d == "DESC" else 1) for f, d in desc.order]
        projection = {f: 1 for f in desc.fields} if desc.fields else None

        if not desc.joins:
            return MongoQuery(
                collection=desc.table,
                filter=match,
                sort=sort,
                skip=desc.offset,
                limit=desc.limit,
                projection=projection,
            )

        pipeline: list[dict[str, Any]] = []
        if match:
            pipeline.append({"$match": match})
        for join in desc.joins:
            pipeline.append(
                {
                    "$lookup": {
                        "from": join.table,
                        "localField": join.local_field,
                        "foreignField": join.foreign_field,
                        "as": join.target,
                    }
                }
            )
            if join.kind == "INNER":
                pipeline.append({"$unwind": f"${join.target}"})
            elif join.kind == "LEFT":
                pipeline.append(
                    {"$unwind": {"path": f"${join.target}", "preserveNullAndEmptyArrays": True}}
                )
            else:
                raise QueryError(f"{join.kind} joins are not supported on MongoDB")
        if sort:
            pipeline.append({"$sort": dict(sort)})
        if desc.offset:
            pipeline.append({"$skip": desc.offset})
        if desc.limit:
            pipeline.append({"$limit": desc.limit})
        if projection:
            pipeline.append({"$project": projection})
        return MongoQuery(collection=desc.table, filter=match, pipeline=pipeline)

    def update_document(
        self,
        values: dict[str, Any],
        increments: dict[str, int | float] | None = None,
    ) -> dict[str, Any]:
        document: dict[str, Any] = {}
        if values:
            document["$set"] = values
        if increments:
            document["$inc"] = increments
        if not document:
            raise QueryError("update needs at least one field")
        return document


class MongoQueryBuilder(QueryBuilder):
    """Builder whose terminals run :class:`DocumentCommand` objects."""

    def __init__(self, backend: DatabaseBackend, table: str) -> None:
        super().__init__(backend, table)
        if not table or "$" in table or "\x00" in table:
            raise QueryError(f"Invalid collection name: {table!r}")
        self.compiler = MongoCompiler()

    def _compile(self, descriptor: QueryDescriptor) -> MongoQuery:
        return self.compiler.select(descriptor)

    def _no_joins(self, descriptor: QueryDescriptor, verb: str) -> None:
        if descriptor.joins:
            raise QueryError(f"{verb} does not support joins")

    async def _run_get(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        q = self.compiler.select(descriptor)
        return await self._backend.query(q.command())

    async def _run_count(self, descriptor: QueryDescriptor) -> int:
        self._no_joins(descriptor, "count")
        command = DocumentCommand("count", descriptor.table, filter=self.compiler.filter(descriptor.where))
        rows = await self._backend.query(command)
        return int(rows[0]["count"]) if rows else 0

    async def _run_update(
        self,
        descriptor: QueryDescriptor,
        values: dict[str, Any],
        increments: dict[str, int | float],
    ) -> int:
        self._no_joins(descriptor, "update")
        command = DocumentCommand(
            "update_many",
            descriptor.table,
            filter=self.compiler.filter(descriptor.where),
            document=self.compiler.update_document(values, increments),
        )
        result = await self._backend.execute(command)
        return result.rowcount

    async def _run_delete(self, descriptor: QueryDescriptor) -> int:
        self._no_joins(descriptor, "delete")
        command = DocumentCommand(
            "delete_many", descriptor.table, filter=self.compiler.filter(descriptor.where)
        )
        result = await self._backend.execute(command)
        return result.rowcount

    async def _run_distinct(self, descriptor: QueryDescriptor, field: str) -> list[Any]:
        self._no_joins(descriptor, "distinct")
        command = DocumentCommand(
            "distinct",
            descriptor.table,
            filter=self.compiler.filter(descriptor.where),
            options={"field": field},
        )
        rows = await self._backend.query(command)
        return [row["value"] for row in rows]
