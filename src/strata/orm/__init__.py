# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Active-Record models, field declarations and indexes."""

from strata.orm.fields import NO_DEFAULT, Field
from strata.orm.indexes import Index
from strata.orm.model import Model
from strata.orm.query import ModelQuery, Page

__all__ = [
    "NO_DEFAULT",
    "Field",
    "Index",
    "Model",
    "ModelQuery",
    "Page",
]
