"""Structural deep cloning and value-identity comparison.

deep_clone() is the isolation boundary between callers and stored state:
everything that enters or leaves a slice passes through it. It accepts a
closed set of shapes (immutable leaves, plain containers, dataclasses) and
rejects everything else, functions included, with NotCloneableError.
"""

from __future__ import annotations

import collections
import dataclasses
import datetime
import decimal
import enum
import fractions
import math
import uuid
from typing import Any, TypeVar

from slicedstore.errors import NotCloneableError

T = TypeVar("T")

# Immutable leaves are shared, never copied.
_LEAF_TYPES = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    decimal.Decimal,
    fractions.Fraction,
    datetime.date,  # covers datetime.datetime
    datetime.time,
    datetime.timedelta,
    uuid.UUID,
    enum.Enum,
)

# Scalars compared by value rather than by reference in same_value().
_SCALAR_TYPES = (
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    decimal.Decimal,
    fractions.Fraction,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    uuid.UUID,
)


def is_leaf(value: object) -> bool:
    return isinstance(value, _LEAF_TYPES)


def deep_clone(value: T) -> T:
    """Return an independent deep copy of value.

    Raises NotCloneableError naming the offending type and its path.
    """
    return _clone(value, {}, "$")


def _clone(value: Any, memo: dict[int, Any], path: str) -> Any:
    if isinstance(value, _LEAF_TYPES):
        return value

    key = id(value)
    if key in memo:
        return memo[key]

    cls = type(value)

    if isinstance(value, dict):
        if cls not in (dict, collections.OrderedDict):
            raise NotCloneableError(f"{path}: mapping of type {cls.__name__} is not cloneable")
        result = cls()
        memo[key] = result
        for k, v in value.items():
            if not _is_hashable_leaf(k):
                raise NotCloneableError(f"{path}: mapping key of type {type(k).__name__} is not cloneable")
            result[k] = _clone(v, memo, f"{path}[{k!r}]")
        return result

    if isinstance(value, list):
        result = []
        memo[key] = result
        for i, item in enumerate(value):
            result.append(_clone(item, memo, f"{path}[{i}]"))
        return result

    if isinstance(value, tuple):
        items = [_clone(item, memo, f"{path}[{i}]") for i, item in enumerate(value)]
        result = cls(*items) if hasattr(value, "_fields") else cls(items)
        memo[key] = result
        return result

    if isinstance(value, (set, frozenset)):
        items = []
        for item in value:
            if not _is_hashable_leaf(item):
                raise NotCloneableError(f"{path}: set member of type {type(item).__name__} is not cloneable")
            items.append(item)
        result = cls(items)
        memo[key] = result
        return result

    if isinstance(value, bytearray):
        result = bytearray(value)
        memo[key] = result
        return result

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _clone_dataclass(value, memo, path)

    raise NotCloneableError(f"{path}: value of type {cls.__name__} is not cloneable")


def _clone_dataclass(value: Any, memo: dict[int, Any], path: str) -> Any:
    cls = type(value)
    # Bypass __init__ so cycles can be registered before fields are filled.
    result = object.__new__(cls)
    memo[id(value)] = result
    for field in dataclasses.fields(value):
        cloned = _clone(getattr(value, field.name), memo, f"{path}.{field.name}")
        object.__setattr__(result, field.name, cloned)
    return result


def _is_hashable_leaf(value: object) -> bool:
    if isinstance(value, tuple):
        return all(_is_hashable_leaf(item) for item in value)
    return isinstance(value, _LEAF_TYPES)


def same_value(a: object, b: object) -> bool:
    """Value identity: the same object, or equal immutable scalars of one type.

    Containers are only ever identical to themselves. NaN is identical to NaN.
    """
    if a is b:
        return True
    if type(a) is not type(b) or not isinstance(a, _SCALAR_TYPES):
        return False
    if isinstance(a, float) and math.isnan(a) and math.isnan(b):
        return True
    return a == b
