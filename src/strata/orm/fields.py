# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Field declarations: validation rules and per-backend value conversion.

A model's ``schema`` maps field names to :class:`Field` objects.  Each field
validates candidate values (collecting every failing rule) and converts
values to the storage form of the target backend and back again:

* sqlite -- datetimes as ISO text, json as text, booleans as integers
* postgresql -- json as text, everything else native
* mongodb -- native BSON values
"""

from __future__ import annotations

import inspect
import json
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from strata.core.constants import BackendType, FieldType

try:
    from bson import Decimal128  # type: ignore[import-not-found]
except ImportError:  # pragma: no cover
    Decimal128 = None  # type: ignore[assignment,misc]

FieldValidator = Callable[[Any], bool | str | None | Awaitable[bool | str | None]]


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()

_STRUCTURED = (FieldType.JSON, FieldType.ARRAY, FieldType.OBJECT)


def _type_ok(kind: FieldType, value: Any) -> bool:
    if kind in (FieldType.STRING, FieldType.TEXT):
        return isinstance(value, str)
    if kind is FieldType.INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind in (FieldType.NUMBER, FieldType.DECIMAL):
        return isinstance(value, int | float | Decimal) and not isinstance(value, bool)
    if kind is FieldType.BOOLEAN:
        return isinstance(value, bool)
    if kind is FieldType.DATE:
        if isinstance(value, date):
            return True
        if isinstance(value, str):
            try:
                datetime.fromisoformat(value)
            except ValueError:
                return False
            return True
        return False
    if kind is FieldType.ARRAY:
        return isinstance(value, list | tuple)
    if kind is FieldType.OBJECT:
        return isinstance(value, dict)
    if kind is FieldType.JSON:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return False
        return True
    if kind is FieldType.UUID:
        if isinstance(value, UUID):
            return True
        try:
            UUID(str(value))
        except ValueError:
            return False
        return True
    if kind is FieldType.BINARY:
        return isinstance(value, bytes | bytearray | memoryview)
    return True


def _measure(value: Any) -> tuple[float | None, str]:
    """Return the quantity min/max apply to, and its unit for messages."""
    if isinstance(value, str):
        return len(value), " characters"
    if isinstance(value, list | tuple | dict):
        return len(value), " items"
    if isinstance(value, int | float | Decimal) and not isinstance(value, bool):
        return float(value), ""
    return None, ""


@dataclass(slots=True)
class Field:
    """Declaration of one model attribute.

    ``min``/``max`` bound numbers by value and strings or arrays by length.
    ``validator`` may be sync or async and returns ``True``/``None`` to
    accept, ``False`` to reject with the default message, or an error string.
    ``message`` replaces every generated message for the field.
    ``setter`` transforms values before validation on every write and
    ``getter`` transforms them on attribute access and in ``to_dict()``;
    the stored value is the setter's output.
    """

    type: FieldType | str = FieldType.ANY
    required: bool = False
    default: Any = NO_DEFAULT
    min: float | None = None
    max: float | None = None
    length: int | None = None
    pattern: str | None = None
    choices: Sequence[Any] | None = None
    validator: FieldValidator | None = None
    message: str | None = None
    unique: bool = False
    setter: Callable[[Any], Any] | None = None
    getter: Callable[[Any], Any] | None = None
    _regex: re.Pattern[str] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.type = FieldType(self.type)
        if self.pattern is not None:
            self._regex = re.compile(self.pattern)
        if self.type is FieldType.ENUM and not self.choices:
            raise ValueError("enum fields need choices")

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def make_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def prepare(self, value: Any) -> Any:
        """Apply the setter to a value about to be validated and written."""
        if self.setter is None or value is None:
            return value
        return self.setter(value)

    def present(self, value: Any) -> Any:
        """Apply the getter to a stored value on attribute access."""
        if self.getter is None or value is None:
            return value
        return self.getter(value)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, name: str, value: Any) -> list[str]:
        """Every message produced for *value*; empty when it is valid."""
        # An empty optional value skips every other rule.
        if value is None or (isinstance(value, str) and value == ""):
            return [self.message or f"{name} is required"] if self.required else []

        if not _type_ok(self.type, value):
            return [self.message or f"{name} must be of type {self.type}"]

        errors: list[str] = []
        amount, unit = _measure(value)
        if amount is not None:
            if self.min is not None and amount < self.min:
                errors.append(f"{name} must be at least {self.min:g}{unit}")
            if self.max is not None and amount > self.max:
                errors.append(f"{name} must be at most {self.max:g}{unit}")
        if self.length is not None and isinstance(value, str | list | tuple):
            if len(value) != self.length:
                errors.append(f"{name} must be exactly {self.length}{unit or ' items'}")
        if self._regex is not None and isinstance(value, str) and not self._regex.search(value):
            errors.append(f"{name} has an invalid format")
        if self.choices is not None:
            candidate = value.value if isinstance(value, Enum) else value
            if candidate not in self.choices:
                allowed = ", ".join(str(c) for c in self.choices)
                errors.append(f"{name} must be one of: {allowed}")
        if self.validator is not None:
            verdict = self.validator(value)
            if inspect.isawaitable(verdict):
                verdict = await verdict
            if verdict is False:
                errors.append(f"{name} is invalid")
            elif isinstance(verdict, str):
                errors.append(verdict)

        if errors and self.message:
            return [self.message]
        return errors

    # ------------------------------------------------------------------
    # Storage conversion
    # ------------------------------------------------------------------

    def to_storage(self, value: Any, backend: BackendType) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            value = value.value
        kind = self.type

        if backend is BackendType.MONGODB:
            if kind is FieldType.DATE and isinstance(value, str):
                return datetime.fromisoformat(value)
            if isinstance(value, date) and not isinstance(value, datetime):
                return datetime.combine(value, time())
            if isinstance(value, Decimal) and Decimal128 is not None:
                return Decimal128(str(value))
            if isinstance(value, UUID):
                return str(value)
            return value

        if kind in _STRUCTURED or (kind is FieldType.ANY and isinstance(value, dict | list)):
            return json.dumps(value, default=str)
        if isinstance(value, UUID):
            return str(value)
        if backend is BackendType.SQLITE:
            if isinstance(value, date):
                return value.isoformat()
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, Decimal):
                return str(value)
        elif kind is FieldType.DATE and isinstance(value, str):
            return datetime.fromisoformat(value)
        return value

    def from_storage(self, value: Any) -> Any:
        if value is None:
            return None
        kind = self.type
        if kind in _STRUCTURED and isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        # Undeclared dicts and lists are written as JSON text by to_storage.
        if kind is FieldType.ANY and isinstance(value, str) and value[:1] in ("{", "["):
            try:
                decoded = json.loads(value)
            except ValueError:
                return value
            return decoded if isinstance(decoded, dict | list) else value
        if kind is FieldType.DATE and isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return value
        if kind is FieldType.BOOLEAN and isinstance(value, int):
            return bool(value)
        if kind is FieldType.DECIMAL:
            if Decimal128 is not None and isinstance(value, Decimal128):
                return value.to_decimal()
            try:
                return Decimal(str(value))
            except InvalidOperation:
                return value
        if kind is FieldType.UUID and isinstance(value, str):
            try:
                return UUID(value)
            except ValueError:
                return value
        if kind is FieldType.BINARY and isinstance(value, memoryview):
            return bytes(value)
        return value


TIMESTAMP_FIELD = Field(FieldType.DATE)
ANY_FIELD = Field()
