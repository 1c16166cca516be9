# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the fluent query builders and the SQL / MongoDB compilers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from strata.core.constants import BackendType
from strata.core.exceptions import QueryError
from strata.query.base import build_condition
from strata.query.descriptor import (
    Condition,
    Group,
    Join,
    QueryDescriptor,
    conditions_from_mapping,
    like_to_regex,
    normalize_operator,
)
from strata.query.mongo import MongoCompiler, MongoQueryBuilder
from strata.query.sql import SQLCompiler, quote_identifier
from strata.storage.backend import DatabaseBackend, DocumentCommand, ExecuteResult

# ---------------------------------------------------------------------------
# Descriptor helpers
# ---------------------------------------------------------------------------


class TestConditions:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("==", "="), ("<>", "!="), ("$gte", ">="), ("NOT   IN", "not in"), ("nin", "not in")],
    )
    def test_operator_aliases(self, raw: str, expected: str) -> None:
        assert normalize_operator(raw) == expected

    def test_unknown_operator(self) -> None:
        with pytest.raises(QueryError, match="Unsupported operator"):
            normalize_operator("~=")

    def test_two_argument_where_is_equality(self) -> None:
        assert build_condition("a", 1) == Condition("a", "=", 1)
        assert build_condition("a", None) == Condition("a", "is null")

    def test_none_comparisons_become_null_checks(self) -> None:
        assert build_condition("a", "=", None).operator == "is null"
        assert build_condition("a", "!=", None).operator == "is not null"

    def test_in_requires_iterable(self) -> None:
        with pytest.raises(QueryError):
            build_condition("a", "in", "abc")

    def test_between_requires_pair(self) -> None:
        with pytest.raises(QueryError, match="exactly two"):
            build_condition("a", "between", (1, 2, 3))

    def test_mapping_conditions(self) -> None:
        group = conditions_from_mapping(
            {"age": {"$gte": 18, "$lt": 65}, "deleted_at": None, "$or": [{"a": 1}, {"b": 2}]}
        )
        assert group.connector == "AND"
        assert group.children[0] == Condition("age", ">=", 18)
        assert group.children[1] == Condition("age", "<", 65)
        assert group.children[2] == Condition("deleted_at", "is null")
        nested = group.children[3]
        assert isinstance(nested, Group) and nested.connector == "OR"

    def test_exists_and_between_operators(self) -> None:
        group = conditions_from_mapping({"a": {"$exists": False}, "b": {"$between": [1, 5]}})
        assert group.children == [Condition("a", "is null"), Condition("b", "between", (1, 5))]

    def test_like_to_regex(self) -> None:
        assert like_to_regex("a%b_c.") == r"^a.*b.c\.$"

    def test_filtered_ands_extra_condition(self) -> None:
        desc = QueryDescriptor("t")
        desc.where.add(Condition("a", "=", 1))
        scoped = desc.filtered(Condition("deleted_at", "is null"))
        assert scoped.where.connector == "AND"
        assert len(scoped.where.children) == 2
        assert desc.filtered(None) is desc


# ---------------------------------------------------------------------------
# SQL compiler
# ---------------------------------------------------------------------------


class TestSQLCompiler:
    def test_quote_identifier(self) -> None:
        assert quote_identifier("users") == '"users"'
        assert quote_identifier("u.id") == '"u"."id"'
        with pytest.raises(QueryError, match="Invalid identifier"):
            quote_identifier("users; DROP TABLE x")

    def test_select_with_everything(self) -> None:
        desc = QueryDescriptor("users", limit=10, offset=20, fields=["id", "name"])
        desc.where.add(Condition("age", ">=", 18))
        desc.where.add(Condition("role", "in", ["a", "b"]))
        desc.order.append(("name", "DESC"))
        q = SQLCompiler().select(desc)
        assert q.statement == (
            'SELECT "id", "name" FROM "users" WHERE ("age" >= ? AND "role" IN (?, ?)) '
            'ORDER BY "name" DESC LIMIT ? OFFSET ?'
        )
        assert q.params == (18, "a", "b", 10, 20)

    def test_sqlite_offset_without_limit(self) -> None:
        q = SQLCompiler(BackendType.SQLITE).select(QueryDescriptor("t", offset=5))
        assert q.statement == 'SELECT * FROM "t" LIMIT -1 OFFSET ?'

    def test_postgres_offset_without_limit(self) -> None:
        q = SQLCompiler(BackendType.POSTGRESQL).select(QueryDescriptor("t", offset=5))
        assert q.statement == 'SELECT * FROM "t" OFFSET ?'

    def test_empty_in_lists(self) -> None:
        desc = QueryDescriptor("t")
        desc.where.add(Condition("a", "in", []))
        desc.where.add(Condition("b", "not in", []))
        q = SQLCompiler().select(desc)
        assert "1 = 0" in q.statement and "1 = 1" in q.statement
        assert q.params == ()

    def test_like_is_case_insensitive_on_postgres(self) -> None:
        desc = QueryDescriptor("t")
        desc.where.add(Condition("name", "like", "a%"))
        assert "ILIKE" in SQLCompiler(BackendType.POSTGRESQL).select(desc).statement
        assert " LIKE " in SQLCompiler(BackendType.SQLITE).select(desc).statement

    def test_or_group(self) -> None:
        desc = QueryDescriptor("t")
        desc.where.add(Group("OR", [Condition("a", "=", 1), Condition("b", "between", (1, 2))]))
        q = SQLCompiler().select(desc)
        assert q.statement == 'SELECT * FROM "t" WHERE ("a" = ? OR "b" BETWEEN ? AND ?)'

    def test_join(self) -> None:
        desc = QueryDescriptor("orders")
        desc.joins.append(Join("users", "user_id", "id", "LEFT", "u"))
        q = SQLCompiler().select(desc)
        assert 'LEFT JOIN "users" AS "u" ON "orders"."user_id" = "u"."id"' in q.statement

    def test_insert_returning(self) -> None:
        q = SQLCompiler().insert("t", {"a": 1, "b": "x"})
        assert q.statement == 'INSERT INTO "t" ("a", "b") VALUES (?, ?) RETURNING *'
        assert q.params == (1, "x")

    def test_update_with_increment(self) -> None:
        desc = QueryDescriptor("t")
        desc.where.add(Condition("id", "=", 3))
        q = SQLCompiler().update(desc, {"name": "n"}, {"views": 2})
        assert q.statement == (
            'UPDATE "t" SET "name" = ?, "views" = COALESCE("views", 0) + ? WHERE "id" = ?'
        )
        assert q.params == ("n", 2, 3)

    def test_update_needs_fields(self) -> None:
        with pytest.raises(QueryError):
            SQLCompiler().update(QueryDescriptor("t"), {})

    def test_truncate_per_dialect(self) -> None:
        assert SQLCompiler(BackendType.POSTGRESQL).truncate("t").statement == 'TRUNCATE TABLE "t"'
        assert SQLCompiler(BackendType.SQLITE).truncate("t").statement == 'DELETE FROM "t"'


# ---------------------------------------------------------------------------
# SQL builder against SQLite
# ---------------------------------------------------------------------------


@pytest.fixture
async def seeded(items_table: DatabaseBackend) -> DatabaseBackend:
    rows = [
        ("apple", 1.5, 10, "fruit"),
        ("banana", 0.5, 0, "fruit"),
        ("carrot", 0.8, 5, "veg"),
        ("donut", 2.0, 3, None),
    ]
    for row in rows:
        await items_table.execute(
            "INSERT INTO items (name, price, qty, category) VALUES (?, ?, ?, ?)", row
        )
    return items_table


class TestSQLQueryBuilder:
    async def test_where_and_order(self, seeded: DatabaseBackend) -> None:
        rows = await seeded.builder("items").where("category", "fruit").order_by("price", "desc").get()
        assert [r["name"] for r in rows] == ["apple", "banana"]

    async def test_or_where(self, seeded: DatabaseBackend) -> None:
        rows = await (
            seeded.builder("items").where("category", "veg").or_where("qty", ">", 8).sort("name").get()
        )
        assert [r["name"] for r in rows] == ["apple", "carrot"]

    async def test_where_any_group(self, seeded: DatabaseBackend) -> None:
        rows = await (
            seeded.builder("items")
            .where("price", "<", 1.9)
            .where_any(lambda g: g.where("qty", 0).where_null("category"))
            .get()
        )
        assert [r["name"] for r in rows] == ["banana"]

    async def test_null_like_between_in(self, seeded: DatabaseBackend) -> None:
        assert await seeded.builder("items").where_null("category").count() == 1
        assert await seeded.builder("items").where_like("name", "%an%").count() == 1
        assert await seeded.builder("items").where_between("price", 0.5, 1.0).count() == 2
        assert await seeded.builder("items").where_not_in("name", ["apple", "donut"]).count() == 2
        assert await seeded.builder("items").where({"qty": {"$gt": 2}, "category": "fruit"}).count() == 1

    async def test_limit_offset_select(self, seeded: DatabaseBackend) -> None:
        rows = await seeded.builder("items").select("name").sort("name").offset(1).limit(2).get()
        assert rows == [{"name": "banana"}, {"name": "carrot"}]

    async def test_first_exists_distinct(self, seeded: DatabaseBackend) -> None:
        first = await seeded.builder("items").sort("-price").first()
        assert first is not None and first["name"] == "donut"
        assert await seeded.builder("items").where("name", "zucchini").exists() is False
        assert await seeded.builder("items").where_not_null("category").distinct("category") == [
            "fruit",
            "veg",
        ]

    async def test_update_increment_delete(self, seeded: DatabaseBackend) -> None:
        assert await seeded.builder("items").where("category", "fruit").update({"price": 1.0}) == 2
        assert await seeded.builder("items").where("name", "carrot").increment("qty", 5) == 1
        carrot = await seeded.builder("items").where("name", "carrot").first()
        assert carrot is not None and carrot["qty"] == 10
        assert await seeded.builder("items").where("qty", "<", 4).delete() == 2
        assert await seeded.builder("items").count() == 2

    async def test_builder_is_single_use(self, seeded: DatabaseBackend) -> None:
        builder = seeded.builder("items").where("qty", ">", 0)
        await builder.get()
        assert builder.consumed
        with pytest.raises(QueryError, match="already executed"):
            await builder.get()
        with pytest.raises(QueryError):
            builder.where("a", 1)

    async def test_to_query_does_not_consume(self, seeded: DatabaseBackend) -> None:
        builder = seeded.builder("items").where("qty", 3)
        q = builder.to_query()
        assert q.params == (3,)
        assert len(await builder.get()) == 1

    async def test_scope_filter_applies_at_compile_time(self, seeded: DatabaseBackend) -> None:
        builder = seeded.builder("items").or_where("name", "apple").or_where("name", "donut")
        builder.scope_filter(Condition("category", "is not null"))
        rows = await builder.get()
        assert [r["name"] for r in rows] == ["apple"]

    async def test_invalid_table_name(self, seeded: DatabaseBackend) -> None:
        with pytest.raises(QueryError):
            seeded.builder("items; --")

    async def test_negative_limit(self, seeded: DatabaseBackend) -> None:
        with pytest.raises(QueryError):
            seeded.builder("items").limit(-1)


# ---------------------------------------------------------------------------
# MongoDB compiler and builder
# ---------------------------------------------------------------------------


class TestMongoCompiler:
    def test_filter_operators(self) -> None:
        group = Group(
            "AND",
            [
                Condition("age", ">=", 18),
                Condition("tags", "in", ["a"]),
                Condition("name", "like", "jo%"),
                Condition("score", "between", (1, 5)),
                Condition("deleted_at", "is null"),
                Condition("email", "is not null"),
            ],
        )
        assert MongoCompiler().filter(group) == {
            "$and": [
                {"age": {"$gte": 18}},
                {"tags": {"$in": ["a"]}},
                {"name": {"$regex": "^jo.*$", "$options": "i"}},
                {"score": {"$gte": 1, "$lte": 5}},
                {"deleted_at": None},
                {"email": {"$ne": None}},
            ]
        }

    def test_single_condition_is_unwrapped(self) -> None:
        assert MongoCompiler().filter(Group("OR", [Condition("a", "=", 1)])) == {"a": 1}

    def test_object_id_coercion(self) -> None:
        from bson import ObjectId

        oid = ObjectId()
        assert MongoCompiler().filter(Group("AND", [Condition("_id", "=", str(oid))])) == {"_id": oid}

    def test_select_find_options(self) -> None:
        desc = QueryDescriptor("users", limit=5, offset=10, fields=["name"])
        desc.order.append(("name", "DESC"))
        command = MongoCompiler().select(desc).command()
        assert command.operation == "find"
        assert command.options == {
            "sort": [("name", -1)],
            "skip": 10,
            "limit": 5,
            "projection": {"name": 1},
        }

    def test_join_builds_pipeline(self) -> None:
        desc = QueryDescriptor("orders", limit=3)
        desc.where.add(Condition("status", "=", "open"))
        desc.joins.append(Join("users", "user_id", "_id", "LEFT", "user"))
        command = MongoCompiler().select(desc).command()
        assert command.operation == "aggregate"
        assert command.document == [
            {"$match": {"status": "open"}},
            {"$lookup": {"from": "users", "localField": "user_id", "foreignField": "_id", "as": "user"}},
            {"$unwind": {"path": "$user", "preserveNullAndEmptyArrays": True}},
            {"$limit": 3},
        ]

    def test_right_join_unsupported(self) -> None:
        desc = QueryDescriptor("orders")
        desc.joins.append(Join("users", "user_id", "_id", "RIGHT"))
        with pytest.raises(QueryError):
            MongoCompiler().select(desc)

    def test_update_document(self) -> None:
        assert MongoCompiler().update_document({"a": 1}, {"n": 2}) == {"$set": {"a": 1}, "$inc": {"n": 2}}


class TestMongoQueryBuilder:
    @pytest.fixture
    def backend(self) -> MagicMock:
        backend = MagicMock()
        backend.backend_type = BackendType.MONGODB
        backend.query = AsyncMock(return_value=[{"count": 4}])
        backend.execute = AsyncMock(return_value=ExecuteResult(rowcount=2))
        return backend

    async def test_count_command(self, backend: MagicMock) -> None:
        assert await MongoQueryBuilder(backend, "users").where("active", True).count() == 4
        command: DocumentCommand = backend.query.await_args.args[0]
        assert command.operation == "count"
        assert command.filter == {"active": True}

    async def test_update_and_delete_commands(self, backend: MagicMock) -> None:
        assert await MongoQueryBuilder(backend, "users").where("a", 1).increment("n", 1, {"b": 2}) == 2
        command: DocumentCommand = backend.execute.await_args.args[0]
        assert command.operation == "update_many"
        assert command.document == {"$set": {"b": 2}, "$inc": {"n": 1}}

        await MongoQueryBuilder(backend, "users").where("a", 1).delete()
        assert backend.execute.await_args.args[0].operation == "delete_many"

    async def test_distinct_command(self, backend: MagicMock) -> None:
        backend.query.return_value = [{"value": "x"}]
        assert await MongoQueryBuilder(backend, "users").distinct("tag") == ["x"]
        assert backend.query.await_args.args[0].options == {"field": "tag"}

    async def test_writes_reject_joins(self, backend: MagicMock) -> None:
        builder = MongoQueryBuilder(backend, "users").join("orders", "_id", "user_id")
        with pytest.raises(QueryError, match="does not support joins"):
            await builder.delete()

    def test_invalid_collection_name(self, backend: MagicMock) -> None:
        with pytest.raises(QueryError):
            MongoQueryBuilder(backend, "bad$name")
