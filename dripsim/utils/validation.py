"""
Persisted State Validation
==========================

Field validators used when loading entity snapshots from storage.

Every validator takes ``(value, field)`` and returns the coerced value or
raises :class:`~dripsim.domain.exceptions.CorruptedStateError`.
:func:`restore_fields` applies a table of validators to a payload and replaces
each failing field with its default, so a single bad value never prevents
startup.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from dripsim.domain.exceptions import CorruptedStateError
from dripsim.utils.time import coerce_datetime

logger = logging.getLogger(__name__)

Validator = Callable[[Any, str], Any]
FieldSpec = Tuple[Any, Validator]


def finite_number(
    value: Any,
    field: str,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    exclusive_minimum: bool = False,
) -> float:
    """Coerce to a finite float within optional bounds."""
    if isinstance(value, bool) or value is None:
        raise CorruptedStateError(field, value, "not a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise CorruptedStateError(field, value, "not a number") from None
    else:
        raise CorruptedStateError(field, value, "not a number")

    if not math.isfinite(number):
        raise CorruptedStateError(field, value, "not finite")
    if minimum is not None:
        if number < minimum or (exclusive_minimum and number == minimum):
            raise CorruptedStateError(field, value, f"below minimum {minimum}")
    if maximum is not None and number > maximum:
        raise CorruptedStateError(field, value, f"above maximum {maximum}")
    return number


def number_in(
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    *,
    exclusive_minimum: bool = False,
) -> Validator:
    """Build a :func:`finite_number` validator with fixed bounds."""

    def _validate(value: Any, field: str) -> float:
        return finite_number(
            value,
            field,
            minimum=minimum,
            maximum=maximum,
            exclusive_minimum=exclusive_minimum,
        )

    return _validate


def strict_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise CorruptedStateError(field, value, "not a boolean")


def optional_timestamp(value: Any, field: str) -> Optional[datetime]:
    if value is None:
        return None
    parsed = coerce_datetime(value)
    if parsed is None:
        raise CorruptedStateError(field, value, "not an ISO-8601 timestamp")
    return parsed


def enum_member(enum_cls: Type[Enum]) -> Validator:
    def _validate(value: Any, field: str) -> Enum:
        try:
            return enum_cls(value)
        except ValueError:
            raise CorruptedStateError(field, value, f"not a {enum_cls.__name__}") from None

    return _validate


def restore_fields(
    payload: Mapping[str, Any] | None,
    specs: Dict[str, FieldSpec],
    *,
    entity: str,
) -> Tuple[Dict[str, Any], List[CorruptedStateError]]:
    """
    Validate each field of a stored snapshot against ``specs``.

    Missing fields silently take their default. Fields that fail validation
    take their default and are returned in the recovered list.

    Args:
        payload: Raw snapshot dict (may be None when nothing was stored)
        specs: ``{field: (default_or_factory, validator)}``
        entity: Entity name, used for log context

    Returns:
        Tuple of (validated values, recovered errors)
    """
    values: Dict[str, Any] = {}
    recovered: List[CorruptedStateError] = []
    source = payload or {}

    for name, (default, validator) in specs.items():
        fallback = default() if callable(default) else default
        if name not in source:
            values[name] = fallback
            continue
        try:
            values[name] = validator(source[name], name)
        except CorruptedStateError as exc:
            logger.warning("Recovered %s.%s to default %r: %s", entity, name, fallback, exc.reason)
            recovered.append(exc)
            values[name] = fallback

    return values, recovered
