# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Active-Record style models over any registered backend.

Subclass :class:`Model`, name a ``table`` and declare a ``schema``::

    class User(Model):
        table = "users"
        schema = {
            "email": Field(FieldType.STRING, required=True, unique=True),
            "age": Field(FieldType.INTEGER, min=0),
        }
        soft_delete = True

    user = await User.create({"email": "a@example.com", "age": 30})
    adults = await User.query().where("age", ">=", 18).order_by("email").get()

The backend is looked up in the process-wide registry by ``connection``
the first time the model is used.  Instances track the last persisted
state; :attr:`Model.dirty_fields` lists unsaved changes.
"""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, ClassVar, Self, TypeVar

from strata.cache.manager import QueryCache, get_query_cache
from strata.core.constants import DEFAULT_CONNECTION, BackendType, TrashedMode
from strata.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    QueryError,
    ValidationError,
)
from strata.orm.fields import ANY_FIELD, TIMESTAMP_FIELD, Field
from strata.orm.indexes import Index
from strata.orm.query import ModelQuery, Page
from strata.query.base import QueryBuilder
from strata.query.descriptor import Condition
from strata.query.sql import SQLCompiler, quote_identifier
from strata.storage.backend import DatabaseBackend, DocumentCommand
from strata.storage.database import get_registry

logger = logging.getLogger("strata.orm.model")

R = TypeVar("R", bound="Model")
T = TypeVar("T")

OrderSpec = str | Mapping[str, str | int] | Sequence[str] | None


class Model:
    """Base class for persisted records."""

    table: ClassVar[str] = ""
    connection: ClassVar[str] = DEFAULT_CONNECTION
    primary_key: ClassVar[str | None] = None
    schema: ClassVar[Mapping[str, Field]] = MappingProxyType({})
    indexes: ClassVar[Sequence[Index]] = ()
    timestamps: ClassVar[bool | tuple[str, str]] = True
    soft_delete: ClassVar[bool] = False
    deleted_at_field: ClassVar[str] = "deleted_at"
    scopes: ClassVar[Mapping[str, Callable[..., Any]]] = MappingProxyType({})
    virtuals: ClassVar[Mapping[str, Callable[[Any], Any]]] = MappingProxyType({})
    cache_ttl: ClassVar[int | None] = None
    cache: ClassVar[QueryCache | None] = None

    _timestamp_fields: ClassVar[tuple[str, str] | None] = ("created_at", "updated_at")

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.schema = MappingProxyType(
            {
                name: spec if isinstance(spec, Field) else Field(spec)
                for name, spec in dict(cls.schema).items()
            }
        )
        cls.scopes = MappingProxyType(dict(cls.scopes))
        cls.virtuals = MappingProxyType(dict(cls.virtuals))
        clash = set(cls.schema) & set(cls.virtuals)
        if clash:
            raise ConfigurationError(
                f"{cls.__name__}: {sorted(clash)} declared as both fields and virtuals"
            )
        if cls.table:
            quote_identifier(cls.table)

        if cls.timestamps is True:
            cls._timestamp_fields = ("created_at", "updated_at")
        elif cls.timestamps:
            created, updated = cls.timestamps
            cls._timestamp_fields = (created, updated)
        else:
            cls._timestamp_fields = None

    def __init__(self, data: Mapping[str, Any] | None = None, **values: Any) -> None:
        object.__setattr__(self, "_data", {**(data or {}), **values})
        object.__setattr__(self, "_original", {})
        object.__setattr__(self, "_persisted", False)

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        cls = type(self)
        if name in self._data:
            return cls._field_for(name).present(self._data[name])
        virtual = cls.virtuals.get(name)
        if virtual is not None:
            return virtual(self)
        if name in cls.schema or name in cls._managed_fields():
            return None
        raise AttributeError(f"{cls.__name__} has no field {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        if name in type(self).virtuals:
            raise AttributeError(f"{name!r} is a virtual field and cannot be assigned")
        self._data[name] = value

    def __getitem__(self, name: str) -> Any:
        return type(self)._field_for(name).present(self._data[name])

    def __setitem__(self, name: str, value: Any) -> None:
        self.__setattr__(name, value)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.pk is not None and self.pk == other.pk  # type: ignore[attr-defined]

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.pk!r}>"

    @property
    def pk(self) -> Any:
        """Primary key value."""
        name = type(self).primary_key or ("_id" if "_id" in self._data else "id")
        return self._data.get(name)

    @property
    def is_persisted(self) -> bool:
        return self._persisted

    @property
    def dirty_fields(self) -> list[str]:
        return [k for k, v in self._data.items() if k not in self._original or self._original[k] != v]

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty_fields)

    @property
    def is_trashed(self) -> bool:
        return type(self).soft_delete and self._data.get(type(self).deleted_at_field) is not None

    def to_dict(self, include_virtuals: bool = False) -> dict[str, Any]:
        cls = type(self)
        result = {k: cls._field_for(k).present(v) for k, v in self._data.items()}
        if include_virtuals:
            for name, fn in cls.virtuals.items():
                result[name] = fn(self)
        return result

    # ------------------------------------------------------------------
    # Class plumbing
    # ------------------------------------------------------------------

    @classmethod
    async def _get_backend(cls) -> DatabaseBackend:
        if not cls.table:
            raise ConfigurationError(f"{cls.__name__} does not declare a table")
        return await get_registry().get_or_init(cls.connection)

    @classmethod
    def _pk_for(cls, backend_type: BackendType) -> str:
        if cls.primary_key:
            return cls.primary_key
        return "_id" if backend_type is BackendType.MONGODB else "id"

    @classmethod
    def _managed_fields(cls) -> tuple[str, ...]:
        managed = list(cls._timestamp_fields or ())
        if cls.soft_delete:
            managed.append(cls.deleted_at_field)
        return tuple(managed)

    @classmethod
    def _field_for(cls, name: str) -> Field:
        spec = cls.schema.get(name)
        if spec is not None:
            return spec
        if name in cls._managed_fields():
            return TIMESTAMP_FIELD
        return ANY_FIELD

    @classmethod
    def _storage(cls, values: Mapping[str, Any], backend_type: BackendType) -> dict[str, Any]:
        return {k: cls._field_for(k).to_storage(v, backend_type) for k, v in values.items()}

    @classmethod
    def _from_row(cls, row: Mapping[str, Any]) -> dict[str, Any]:
        return {k: cls._field_for(k).from_storage(v) for k, v in row.items()}

    @classmethod
    def _hydrate(cls, row: Mapping[str, Any]) -> Self:
        instance = cls.__new__(cls)
        object.__setattr__(instance, "_data", cls._from_row(row))
        instance._snapshot()
        return instance

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @classmethod
    def _touch(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Stamp the updated-at field into *values* when timestamps are on."""
        if cls._timestamp_fields:
            values[cls._timestamp_fields[1]] = cls._now()
        return values

    @classmethod
    def _trashed_condition(cls, mode: TrashedMode) -> Condition | None:
        if not cls.soft_delete or mode is TrashedMode.INCLUDE:
            return None
        if mode is TrashedMode.ONLY:
            return Condition(cls.deleted_at_field, "is not null")
        return Condition(cls.deleted_at_field, "is null")

    @classmethod
    def _require_soft_delete(cls) -> None:
        if not cls.soft_delete:
            raise QueryError(f"{cls.__name__} does not use soft deletes")

    @classmethod
    def _query_cache(cls) -> QueryCache | None:
        if cls.cache_ttl is None:
            return None
        return cls.cache or get_query_cache()

    @classmethod
    async def _invalidate_cache(cls) -> None:
        cache = cls._query_cache()
        if cache is not None:
            await cache.invalidate(cls.table)

    @classmethod
    async def _cached_read(
        cls,
        builder: QueryBuilder,
        kind: str,
        fetch: Callable[[], Awaitable[list[dict[str, Any]]]],
    ) -> list[dict[str, Any]]:
        cache = cls._query_cache()
        # Rows read inside a transaction may be rolled back; never cache them.
        if cache is None or builder.backend.in_transaction:
            return await fetch()
        key = cache.make_key(cls.table, f"{kind}:{builder.signature()}")
        rows = await cache.get(key)
        if rows is not None:
            builder.mark_consumed()
            return rows
        rows = await fetch()
        await cache.set(key, rows, cls.cache_ttl)
        return rows

    @classmethod
    def _match(cls, key_or_condition: Any) -> ModelQuery[Self]:
        q = cls.query()
        if isinstance(key_or_condition, Mapping):
            return q.where(key_or_condition)
        return q.where_key(key_or_condition)

    @classmethod
    async def _atomic(cls, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* in a transaction unless the backend lacks them or one is open."""
        backend = await cls._get_backend()
        if backend.supports_transactions and not backend.in_transaction:
            return await cls.transaction(lambda _db: fn())
        return await fn()

    def _detached(self) -> Self:
        clone = type(self).__new__(type(self))
        object.__setattr__(clone, "_data", copy.deepcopy(self._data))
        clone._snapshot()
        return clone

    @classmethod
    async def _validate_values(cls, values: Mapping[str, Any]) -> None:
        errors: dict[str, list[str]] = {}
        for name, value in values.items():
            spec = cls.schema.get(name)
            if spec is None:
                continue
            messages = await spec.validate(name, value)
            if messages:
                errors[name] = messages
        if errors:
            raise ValidationError(errors, model=cls.__name__)

    @classmethod
    def _apply_scope(cls, query: ModelQuery[Any], name: str, *args: Any, **kwargs: Any) -> None:
        try:
            fn = cls.scopes[name]
        except KeyError:
            raise QueryError(f"{cls.__name__} has no scope {name!r}") from None
        result = fn(query, *args, **kwargs)
        if isinstance(result, Mapping):
            query.where(result)

    async def _run_hook(self, name: str) -> None:
        result = getattr(self, name)()
        if inspect.isawaitable(result):
            await result

    def _snapshot(self) -> None:
        object.__setattr__(self, "_original", copy.deepcopy(self._data))
        object.__setattr__(self, "_persisted", True)

    def _key(self, backend: DatabaseBackend) -> tuple[str, Any]:
        pk = type(self)._pk_for(backend.backend_type)
        value = self._data.get(pk)
        if value is None:
            raise NotFoundError(type(self).__name__, None)
        return pk, value

    # ------------------------------------------------------------------
    # Lifecycle hooks (override; sync or async)
    # ------------------------------------------------------------------

    def before_validate(self) -> Any: ...

    def after_validate(self) -> Any: ...

    def before_save(self) -> Any: ...

    def after_save(self) -> Any: ...

    def before_create(self) -> Any: ...

    def after_create(self) -> Any: ...

    def before_update(self) -> Any: ...

    def after_update(self) -> Any: ...

    def before_delete(self) -> Any: ...

    def after_delete(self) -> Any: ...

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @classmethod
    def query(cls) -> ModelQuery[Self]:
        return ModelQuery(cls)

    @classmethod
    def with_trashed(cls) -> ModelQuery[Self]:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls) -> ModelQuery[Self]:
        return cls.query().only_trashed()

    @classmethod
    def scope(cls, name: str, *args: Any, **kwargs: Any) -> ModelQuery[Self]:
        return cls.query().scope(name, *args, **kwargs)

    @classmethod
    def _filtered(cls, condition: Mapping[str, Any] | None, order_by: OrderSpec = None) -> ModelQuery[Self]:
        q = cls.query()
        if condition:
            q.where(condition)
        if isinstance(order_by, str | Mapping):
            q.sort(order_by)
        elif order_by:
            for spec in order_by:
                q.sort(spec)
        return q

    @classmethod
    async def find(cls, key_or_condition: Any) -> Self | None:
        if isinstance(key_or_condition, Mapping):
            return await cls.find_one(key_or_condition)
        return await cls.find_by_id(key_or_condition)

    @classmethod
    async def find_by_id(cls, key: Any) -> Self | None:
        return await cls.query().where_key(key).first()

    @classmethod
    async def find_one(cls, condition: Mapping[str, Any] | None = None, order_by: OrderSpec = None) -> Self | None:
        return await cls._filtered(condition, order_by).first()

    @classmethod
    async def find_all(
        cls,
        condition: Mapping[str, Any] | None = None,
        *,
        order_by: OrderSpec = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Self]:
        q = cls._filtered(condition, order_by)
        if limit is not None:
            q.limit(limit)
        if offset is not None:
            q.offset(offset)
        return await q.get()

    @classmethod
    async def find_or_fail(cls, key_or_condition: Any) -> Self:
        found = await cls.find(key_or_condition)
        if found is None:
            raise NotFoundError(cls.__name__, key_or_condition)
        return found

    @classmethod
    async def count(cls, condition: Mapping[str, Any] | None = None) -> int:
        return await cls._filtered(condition).count()

    @classmethod
    async def exists(cls, condition: Mapping[str, Any] | None = None) -> bool:
        return await cls._filtered(condition).exists()

    @classmethod
    async def paginate(
        cls,
        condition: Mapping[str, Any] | None = None,
        page: int = 1,
        page_size: int = 20,
        order_by: OrderSpec = None,
    ) -> Page[Self]:
        return await cls._filtered(condition, order_by).paginate(page, page_size)

    @classmethod
    async def distinct(cls, field: str, condition: Mapping[str, Any] | None = None) -> list[Any]:
        return await cls._filtered(condition).distinct(field)

    @classmethod
    async def aggregate(cls, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Run a document pipeline over non-trashed records; see :meth:`ModelQuery.aggregate`."""
        return await cls.query().aggregate(pipeline)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @classmethod
    async def create(cls, data: Mapping[str, Any] | None = None, **values: Any) -> Self:
        instance = cls(data, **values)
        await instance._insert()
        return instance

    @classmethod
    async def create_many(cls, rows: Iterable[Mapping[str, Any]]) -> list[Self]:
        """Create every row; atomically where the backend supports transactions."""
        rows = list(rows)
        backend = await cls._get_backend()

        async def run(_db: DatabaseBackend | None = None) -> list[Self]:
            return [await cls.create(row) for row in rows]

        if backend.supports_transactions and not backend.in_transaction:
            created = await backend.transaction(run)
            await cls._invalidate_cache()
            return created
        return await run()

    async def _insert(self) -> None:
        cls = type(self)
        backend = await cls._get_backend()
        pk = cls._pk_for(backend.backend_type)

        for name, spec in cls.schema.items():
            if self._data.get(name) is None and spec.has_default:
                self._data[name] = spec.make_default()

        await self._run_hook("before_validate")
        for name, spec in cls.schema.items():
            if self._data.get(name) is not None:
                self._data[name] = spec.prepare(self._data[name])
        errors: dict[str, list[str]] = {}
        for name, spec in cls.schema.items():
            messages = await spec.validate(name, self._data.get(name))
            if messages:
                errors[name] = messages
        if errors:
            raise ValidationError(errors, model=cls.__name__)
        await self._run_hook("after_validate")
        await self._run_hook("before_save")
        await self._run_hook("before_create")

        if cls._timestamp_fields:
            now = cls._now()
            for name in cls._timestamp_fields:
                if self._data.get(name) is None:
                    self._data[name] = now

        values = {k: v for k, v in self._data.items() if not (k == pk and v is None)}
        payload = cls._storage(values, backend.backend_type)
        if backend.backend_type.is_relational:
            q = SQLCompiler(backend.backend_type).insert(cls.table, payload)
            rows = await backend.query(q.statement, q.params)
            if rows:
                self._data.update(cls._from_row(rows[0]))
        else:
            result = await backend.execute(DocumentCommand("insert_one", cls.table, document=payload))
            if self._data.get(pk) is None:
                self._data[pk] = result.last_id

        self._snapshot()
        logger.debug("Created %s %r", cls.__name__, self._data.get(pk))
        await cls._invalidate_cache()
        await self._run_hook("after_create")
        await self._run_hook("after_save")

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def save(self) -> Self:
        """Insert a new instance or write its dirty fields."""
        if not self._persisted:
            await self._insert()
        elif self.is_dirty:
            await self._write_changes()
        return self

    async def update(self, data: Mapping[str, Any] | None = None, **values: Any) -> Self:
        for name, value in {**(data or {}), **values}.items():
            setattr(self, name, value)
        return await self.save()

    async def _write_changes(self) -> None:
        cls = type(self)
        backend = await cls._get_backend()
        pk, key = self._key(backend)

        await self._run_hook("before_validate")
        for name in self.dirty_fields:
            self._data[name] = cls._field_for(name).prepare(self._data.get(name))
        await cls._validate_values({f: self._data.get(f) for f in self.dirty_fields})
        await self._run_hook("after_validate")
        await self._run_hook("before_save")
        await self._run_hook("before_update")

        changed = [f for f in self.dirty_fields if f != pk]
        if changed:
            if cls._timestamp_fields:
                cls._touch(self._data)
                if cls._timestamp_fields[1] not in changed:
                    changed.append(cls._timestamp_fields[1])
            payload = cls._storage({f: self._data.get(f) for f in changed}, backend.backend_type)
            count = await backend.builder(cls.table).where(pk, key).update(payload)
            if count == 0:
                raise NotFoundError(cls.__name__, key)
            self._snapshot()
            await cls._invalidate_cache()

        await self._run_hook("after_update")
        await self._run_hook("after_save")

    @classmethod
    async def update_by_id(cls, key: Any, data: Mapping[str, Any]) -> Self:
        instance = await cls.find_by_id(key)
        if instance is None:
            raise NotFoundError(cls.__name__, key)
        return await instance.update(data)

    @classmethod
    async def update_many(cls, condition: Mapping[str, Any] | None, data: Mapping[str, Any]) -> int:
        return await cls._filtered(condition).update(data)

    async def increment(self, field: str, amount: int | float = 1) -> Self:
        cls = type(self)
        backend = await cls._get_backend()
        pk, key = self._key(backend)
        extra = cls._touch({})
        count = await backend.builder(cls.table).where(pk, key).increment(
            field, amount, cls._storage(extra, backend.backend_type)
        )
        if count == 0:
            raise NotFoundError(cls.__name__, key)
        extra[field] = (self._data.get(field) or 0) + amount
        self._data.update(extra)
        self._original.update(copy.deepcopy(extra))
        await cls._invalidate_cache()
        return self

    async def decrement(self, field: str, amount: int | float = 1) -> Self:
        return await self.increment(field, -amount)

    @classmethod
    async def upsert(cls, condition: Mapping[str, Any], data: Mapping[str, Any]) -> Self:
        """Update the first match of *condition*, or create it."""
        existing = await cls.find_one(condition)
        if existing is not None:
            return await existing.update(data)
        seed = {k: v for k, v in condition.items() if not k.startswith("$") and not isinstance(v, Mapping)}
        return await cls.create({**seed, **data})

    @classmethod
    async def find_or_create(
        cls,
        condition: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> tuple[Self, bool]:
        """Return ``(instance, created)``."""
        existing = await cls.find_one(condition)
        if existing is not None:
            return existing, False
        seed = {k: v for k, v in condition.items() if not k.startswith("$") and not isinstance(v, Mapping)}
        return await cls.create({**seed, **(defaults or {})}), True

    @classmethod
    async def find_one_and_update(
        cls,
        key_or_condition: Any,
        data: Mapping[str, Any],
        *,
        return_new: bool = True,
    ) -> Self | None:
        """Update the first match and return it; ``None`` when nothing matches.

        The update runs the usual validation and hooks.  With
        ``return_new=False`` the state from before the update is returned.
        """

        async def run() -> Self | None:
            found = await cls._match(key_or_condition).first()
            if found is None:
                return None
            before = found._detached()
            await found.update(data)
            return found if return_new else before

        return await cls._atomic(run)

    @classmethod
    async def find_one_and_replace(
        cls,
        key_or_condition: Any,
        replacement: Mapping[str, Any],
        *,
        return_new: bool = True,
    ) -> Self | None:
        """Replace every field of the first match except its key and creation time.

        Fields missing from *replacement* are cleared.
        """

        async def run() -> Self | None:
            found = await cls._match(key_or_condition).first()
            if found is None:
                return None
            before = found._detached()
            backend = await cls._get_backend()
            keep = {cls._pk_for(backend.backend_type)}
            if cls._timestamp_fields:
                keep.add(cls._timestamp_fields[0])
            for name in list(found._data):
                if name not in keep and name not in replacement:
                    found._data[name] = None
            for name, value in replacement.items():
                setattr(found, name, value)
            await found.save()
            return found if return_new else before

        return await cls._atomic(run)

    @classmethod
    async def find_one_and_delete(cls, key_or_condition: Any) -> Self | None:
        """Delete the first match (soft when enabled) and return it."""

        async def run() -> Self | None:
            found = await cls._match(key_or_condition).first()
            if found is not None:
                await found.delete()
            return found

        return await cls._atomic(run)

    async def reload(self) -> Self:
        cls = type(self)
        backend = await cls._get_backend()
        pk, key = self._key(backend)
        row = await backend.builder(cls.table).where(pk, key).first()
        if row is None:
            raise NotFoundError(cls.__name__, key)
        object.__setattr__(self, "_data", cls._from_row(row))
        self._snapshot()
        return self

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self) -> None:
        """Soft delete when enabled, otherwise remove the row."""
        cls = type(self)
        backend = await cls._get_backend()
        pk, key = self._key(backend)
        await self._run_hook("before_delete")
        builder = backend.builder(cls.table).where(pk, key)
        if cls.soft_delete:
            now = cls._now()
            count = await builder.update(cls._storage({cls.deleted_at_field: now}, backend.backend_type))
            if count:
                self._data[cls.deleted_at_field] = now
                self._snapshot()
        else:
            count = await builder.delete()
            if count:
                object.__setattr__(self, "_persisted", False)
        if count == 0:
            raise NotFoundError(cls.__name__, key)
        await cls._invalidate_cache()
        await self._run_hook("after_delete")

    async def restore(self) -> Self:
        cls = type(self)
        cls._require_soft_delete()
        backend = await cls._get_backend()
        pk, key = self._key(backend)
        count = await backend.builder(cls.table).where(pk, key).update({cls.deleted_at_field: None})
        if count == 0:
            raise NotFoundError(cls.__name__, key)
        self._data[cls.deleted_at_field] = None
        self._snapshot()
        await cls._invalidate_cache()
        return self

    async def force_delete(self) -> None:
        cls = type(self)
        backend = await cls._get_backend()
        pk, key = self._key(backend)
        await self._run_hook("before_delete")
        count = await backend.builder(cls.table).where(pk, key).delete()
        if count == 0:
            raise NotFoundError(cls.__name__, key)
        object.__setattr__(self, "_persisted", False)
        await cls._invalidate_cache()
        await self._run_hook("after_delete")

    @classmethod
    async def delete_by_id(cls, key: Any) -> None:
        instance = await cls.find_by_id(key)
        if instance is None:
            raise NotFoundError(cls.__name__, key)
        await instance.delete()

    @classmethod
    async def restore_by_id(cls, key: Any) -> Self:
        instance = await cls.only_trashed().where_key(key).first()
        if instance is None:
            raise NotFoundError(cls.__name__, key)
        return await instance.restore()

    @classmethod
    async def force_delete_by_id(cls, key: Any) -> None:
        instance = await cls.with_trashed().where_key(key).first()
        if instance is None:
            raise NotFoundError(cls.__name__, key)
        await instance.force_delete()

    @classmethod
    async def delete_many(cls, condition: Mapping[str, Any] | None = None) -> int:
        return await cls._filtered(condition).delete()

    @classmethod
    async def restore_many(cls, condition: Mapping[str, Any] | None = None) -> int:
        return await cls._filtered(condition).only_trashed().restore()

    @classmethod
    async def force_delete_many(cls, condition: Mapping[str, Any] | None = None) -> int:
        return await cls._filtered(condition).with_trashed().force_delete()

    @classmethod
    async def truncate(cls) -> None:
        backend = await cls._get_backend()
        if backend.backend_type.is_relational:
            q = SQLCompiler(backend.backend_type).truncate(cls.table)
            await backend.execute(q.statement)
        else:
            await backend.execute(DocumentCommand("delete_many", cls.table))
        await cls._invalidate_cache()

    @classmethod
    async def transaction(cls, fn: Callable[[DatabaseBackend], Awaitable[T]]) -> T:
        """Run *fn* in a transaction on this model's connection."""
        backend = await cls._get_backend()
        try:
            return await backend.transaction(fn)
        finally:
            await cls._invalidate_cache()

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    async def belongs_to(self, related: type[R], foreign_key: str, local_key: str | None = None) -> R | None:
        """The *related* record this one points at through *foreign_key*."""
        value = self._data.get(foreign_key)
        if value is None:
            return None
        q = related.query()
        if local_key:
            q.where(local_key, value)
        else:
            q.where_key(value)
        return await q.first()

    async def has_one(self, related: type[R], foreign_key: str, local_key: str | None = None) -> R | None:
        value = self._data.get(local_key) if local_key else self.pk
        if value is None:
            return None
        return await related.query().where(foreign_key, value).first()

    async def has_many(self, related: type[R], foreign_key: str, local_key: str | None = None) -> list[R]:
        value = self._data.get(local_key) if local_key else self.pk
        if value is None:
            return []
        return await related.query().where(foreign_key, value).get()

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    @classmethod
    def all_indexes(cls) -> list[Index]:
        """Declared indexes plus one unique index per ``unique`` field."""
        result = list(cls.indexes)
        covered = {tuple(i.field_names) for i in result if i.unique}
        for name, spec in cls.schema.items():
            if spec.unique and (name,) not in covered:
                result.append(Index(name, unique=True))
        return result

    @classmethod
    async def create_indexes(cls) -> list[str]:
        backend = await cls._get_backend()
        names: list[str] = []
        for index in cls.all_indexes():
            if backend.backend_type.is_relational:
                await backend.execute(index.create_sql(cls.table, backend.backend_type))
            else:
                await backend.execute(
                    DocumentCommand(
                        "create_index",
                        cls.table,
                        document=index.mongo_keys(),
                        options=index.mongo_options(cls.table),
                    )
                )
            names.append(index.resolved_name(cls.table))
        logger.info("Ensured %d index(es) on %s", len(names), cls.table)
        return names

    @classmethod
    async def get_indexes(cls) -> list[dict[str, Any]]:
        """Indexes present on the table; each row carries at least ``name``."""
        backend = await cls._get_backend()
        if backend.backend_type.is_relational:
            q = SQLCompiler(backend.backend_type).list_indexes(cls.table)
            return await backend.query(q.statement, q.params)
        return await backend.query(DocumentCommand("list_indexes", cls.table))

    @classmethod
    async def drop_indexes(cls) -> list[str]:
        backend = await cls._get_backend()
        names: list[str] = []
        if backend.backend_type.is_relational:
            for index in cls.all_indexes():
                await backend.execute(index.drop_sql(cls.table))
                names.append(index.resolved_name(cls.table))
            return names

        existing = {
            row.get("name") for row in await backend.query(DocumentCommand("list_indexes", cls.table))
        }
        for index in cls.all_indexes():
            name = index.resolved_name(cls.table)
            if name in existing:
                await backend.execute(DocumentCommand("drop_index", cls.table, options={"name": name}))
                names.append(name)
        return names
