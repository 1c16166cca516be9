# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Model-aware query chains.

A :class:`ModelQuery` records builder calls synchronously and replays them
on the backend's :class:`~strata.query.base.QueryBuilder` when a terminal
runs, so chains can be built before the connection is resolved.  Results
are hydrated into model instances, soft-deleted rows are hidden unless
requested, reads go through the model's cache and writes invalidate it.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Self, TypeVar

from strata.core.constants import TrashedMode
from strata.core.exceptions import NotFoundError, QueryError
from strata.query.base import _MISSING, ConditionGroup, QueryBuilder
from strata.storage.backend import DocumentCommand

if TYPE_CHECKING:
    from strata.orm.model import Model
    from strata.storage.backend import DatabaseBackend

M = TypeVar("M", bound="Model")

_PK_OP = "__primary_key__"


@dataclass(slots=True)
class Page(Generic[M]):
    items: list[M]
    total: int
    page: int
    page_size: int
    pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.pages = math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "pages": self.pages,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


class ModelQuery(Generic[M]):
    """Chainable query over a model's table that returns model instances."""

    def __init__(self, model: type[M]) -> None:
        self._model = model
        self._ops: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self._trashed = TrashedMode.EXCLUDE
        self._consumed = False

    @property
    def model(self) -> type[M]:
        return self._model

    @property
    def trashed_mode(self) -> TrashedMode:
        return self._trashed

    def clone(self) -> ModelQuery[M]:
        copy: ModelQuery[M] = ModelQuery(self._model)
        copy._ops = list(self._ops)
        copy._trashed = self._trashed
        return copy

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    def _push(self, op: str, *args: Any, **kwargs: Any) -> Self:
        self._check_usable()
        self._ops.append((op, args, kwargs))
        return self

    def where(self, field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Self:
        return self._push("where", *(a for a in (field, operator, value) if a is not _MISSING))

    def or_where(self, field: str | Mapping[str, Any], operator: Any = _MISSING, value: Any = _MISSING) -> Self:
        return self._push("or_where", *(a for a in (field, operator, value) if a is not _MISSING))

    def where_any(self, build: Callable[[ConditionGroup], object]) -> Self:
        return self._push("where_any", build)

    def where_all(self, build: Callable[[ConditionGroup], object]) -> Self:
        return self._push("where_all", build)

    def where_in(self, field: str, values: Iterable[Any]) -> Self:
        return self._push("where_in", field, list(values))

    def where_not_in(self, field: str, values: Iterable[Any]) -> Self:
        return self._push("where_not_in", field, list(values))

    def where_null(self, field: str) -> Self:
        return self._push("where_null", field)

    def where_not_null(self, field: str) -> Self:
        return self._push("where_not_null", field)

    def where_between(self, field: str, low: Any, high: Any) -> Self:
        return self._push("where_between", field, low, high)

    def where_like(self, field: str, pattern: str) -> Self:
        return self._push("where_like", field, pattern)

    def where_key(self, value: Any) -> Self:
        """Match on the primary key, whatever the backend calls it."""
        return self._push(_PK_OP, value)

    def order_by(self, field: str, direction: str | int = "ASC") -> Self:
        return self._push("order_by", field, direction)

    def sort(self, spec: str | Mapping[str, str | int]) -> Self:
        return self._push("sort", spec)

    def limit(self, count: int) -> Self:
        return self._push("limit", count)

    def offset(self, count: int) -> Self:
        return self._push("offset", count)

    skip = offset

    def select(self, *fields: str) -> Self:
        return self._push("select", *fields)

    def join(
        self,
        table: str,
        local_field: str,
        foreign_field: str,
        kind: str = "INNER",
        alias: str | None = None,
    ) -> Self:
        return self._push("join", table, local_field, foreign_field, kind, alias)

    def with_trashed(self) -> Self:
        self._check_usable()
        self._trashed = TrashedMode.INCLUDE
        return self

    def only_trashed(self) -> Self:
        self._check_usable()
        self._trashed = TrashedMode.ONLY
        return self

    def scope(self, name: str, *args: Any, **kwargs: Any) -> Self:
        self._check_usable()
        self._model._apply_scope(self, name, *args, **kwargs)
        return self

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self) -> list[M]:
        backend, builder = await self._start()
        rows = await self._model._cached_read(builder, "get", builder.get)
        return [self._model._hydrate(row) for row in rows]

    all = get

    async def first(self) -> M | None:
        self.limit(1)
        items = await self.get()
        return items[0] if items else None

    async def find(self, key_or_condition: Any) -> M | None:
        """First match of a primary key or a condition mapping, within this query."""
        if isinstance(key_or_condition, Mapping):
            self.where(key_or_condition)
            return await self.first()
        return await self.find_by_id(key_or_condition)

    async def find_by_id(self, key: Any) -> M | None:
        return await self.where_key(key).first()

    async def first_or_fail(self) -> M:
        item = await self.first()
        if item is None:
            raise NotFoundError(self._model.__name__, self._describe())
        return item

    async def count(self) -> int:
        backend, builder = await self._start()

        async def fetch() -> list[dict[str, Any]]:
            return [{"count": await builder.count()}]

        rows = await self._model._cached_read(builder, "count", fetch)
        return int(rows[0]["count"])

    async def exists(self) -> bool:
        backend, builder = await self._start()
        return await builder.exists()

    async def distinct(self, field: str) -> list[Any]:
        backend, builder = await self._start()
        spec = self._model._field_for(field)
        return [spec.from_storage(v) for v in await builder.distinct(field)]

    async def aggregate(self, pipeline: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Run a document pipeline after this query's filter; document backends only."""
        backend, builder = await self._start()
        if backend.backend_type.is_relational:
            raise QueryError(f"aggregate() is not supported on {backend.backend_type}")
        compiled = builder.to_query()
        if compiled.pipeline is not None:
            stages = list(compiled.pipeline)
        else:
            stages = [{"$match": compiled.filter}] if compiled.filter else []
        command = DocumentCommand("aggregate", self._model.table, document=[*stages, *pipeline])
        return await backend.query(command)

    async def paginate(self, page: int = 1, page_size: int = 20) -> Page[M]:
        if page < 1 or page_size < 1:
            raise QueryError("page and page_size must be positive")
        total = await self.clone().count()
        items = await self.offset((page - 1) * page_size).limit(page_size).get()
        return Page(items=items, total=total, page=page, page_size=page_size)

    async def to_query(self) -> Any:
        """Compile the chain for inspection without running it."""
        backend, builder = await self._build()
        return builder.to_query()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update(self, data: Mapping[str, Any]) -> int:
        """Bulk update; validates the given fields but runs no hooks."""
        values = {k: self._model._field_for(k).prepare(v) for k, v in data.items()}
        await self._model._validate_values(values)
        backend, builder = await self._start()
        self._model._touch(values)
        count = await builder.update(self._model._storage(values, backend.backend_type))
        await self._model._invalidate_cache()
        return count

    async def increment(self, field: str, amount: int | float = 1) -> int:
        backend, builder = await self._start()
        extra = self._model._touch({})
        count = await builder.increment(
            field, amount, self._model._storage(extra, backend.backend_type)
        )
        await self._model._invalidate_cache()
        return count

    async def decrement(self, field: str, amount: int | float = 1) -> int:
        return await self.increment(field, -amount)

    async def delete(self) -> int:
        """Soft delete when the model uses soft deletes, else hard delete."""
        model = self._model
        backend, builder = await self._start()
        if model.soft_delete:
            stamp = model._storage({model.deleted_at_field: model._now()}, backend.backend_type)
            count = await builder.update(stamp)
        else:
            count = await builder.delete()
        await model._invalidate_cache()
        return count

    async def restore(self) -> int:
        model = self._model
        model._require_soft_delete()
        if self._trashed is TrashedMode.EXCLUDE:
            self._trashed = TrashedMode.ONLY
        backend, builder = await self._start()
        count = await builder.update({model.deleted_at_field: None})
        await model._invalidate_cache()
        return count

    async def force_delete(self) -> int:
        if self._trashed is TrashedMode.EXCLUDE:
            self._trashed = TrashedMode.INCLUDE
        backend, builder = await self._start()
        count = await builder.delete()
        await self._model._invalidate_cache()
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_usable(self) -> None:
        if self._consumed:
            raise QueryError(
                f"Query on {self._model.__name__} was already executed; build a new one"
            )

    def _describe(self) -> str:
        return ", ".join(f"{op}{args}" for op, args, _ in self._ops) or "<all>"

    async def _build(self) -> tuple[DatabaseBackend, QueryBuilder]:
        self._check_usable()
        backend = await self._model._get_backend()
        builder = backend.builder(self._model.table)
        for op, args, kwargs in self._ops:
            if op == _PK_OP:
                builder.where(self._model._pk_for(backend.backend_type), *args)
            else:
                getattr(builder, op)(*args, **kwargs)
        builder.scope_filter(self._model._trashed_condition(self._trashed))
        return backend, builder

    async def _start(self) -> tuple[DatabaseBackend, QueryBuilder]:
        result = await self._build()
        self._consumed = True
        return result
