# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Fluent query builders and their SQL / MongoDB compilers."""

from strata.query.base import ConditionGroup, QueryBuilder
from strata.query.descriptor import Condition, Group, Join, QueryDescriptor
from strata.query.mongo import MongoCompiler, MongoQuery, MongoQueryBuilder
from strata.query.sql import SQLCompiler, SQLQuery, SQLQueryBuilder, quote_identifier

__all__ = [
    "Condition",
    "ConditionGroup",
    "Group",
    "Join",
    "MongoCompiler",
    "MongoQuery",
    "MongoQueryBuilder",
    "QueryBuilder",
    "QueryDescriptor",
    "SQLCompiler",
    "SQLQuery",
    "SQLQueryBuilder",
    "quote_identifier",
]
