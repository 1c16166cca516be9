# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Placeholder rewriting for PostgreSQL.

Compiled statements always use ``?`` markers.  asyncpg expects ``$1, $2, ...``
so :func:`adapt_query` rewrites them for the PostgreSQL backend, leaving
markers inside quoted strings and quoted identifiers alone.
"""

from __future__ import annotations

from strata.core.constants import BackendType


def adapt_query(query: str, dialect: BackendType | str) -> str:
    """Rewrite ``?`` placeholders for the target *dialect*.

    Raises:
        ValueError: If *dialect* is not a relational backend.
    """
    dialect = BackendType(dialect)
    if dialect is BackendType.SQLITE:
        return query
    if dialect is BackendType.POSTGRESQL:
        return _question_to_dollar(query)
    raise ValueError(f"Placeholder rewriting is not defined for {dialect!r}")


def count_placeholders(query: str) -> int:
    """Number of ``?`` markers outside string literals and quoted identifiers."""
    return _question_to_dollar(query).count("$") - query.count("$")


def _question_to_dollar(query: str) -> str:
    result: list[str] = []
    counter = 0
    quote: str | None = None

    i = 0
    while i < len(query):
        ch = query[i]

        if quote is None and ch in ("'", '"'):
            quote = ch
            result.append(ch)
        elif quote is not None and ch == quote:
            # A doubled quote is an escaped quote inside the literal.
            if i + 1 < len(query) and query[i + 1] == quote:
                result.append(ch * 2)
                i += 2
                continue
            quote = None
            result.append(ch)
        elif ch == "?" and quote is None:
            counter += 1
            result.append(f"${counter}")
        else:
            result.append(ch)

        i += 1

    return "".join(result)
