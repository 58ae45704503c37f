"""Exceptions raised by SlicedStore.

Every error derives from SliceStoreError, and also from the builtin that
best describes it, so callers can catch either.
"""

from __future__ import annotations


class SliceStoreError(Exception):
    """Base class for all SlicedStore errors."""


class SliceAlreadyRegisteredError(SliceStoreError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Slice "{name}" is already registered')
        self.slice_name = name


class SliceNotRegisteredError(SliceStoreError, KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Slice "{name}" is not registered')
        self.slice_name = name

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return self.args[0]


class UnknownFieldError(SliceStoreError, KeyError):
    def __init__(self, slice_name: str, keys) -> None:
        keys = sorted(str(key) for key in keys)
        super().__init__(f'Slice "{slice_name}" has no field(s): {", ".join(keys)}')
        self.slice_name = slice_name
        self.keys = keys

    def __str__(self) -> str:
        return self.args[0]


class NotCloneableError(SliceStoreError, TypeError):
    """A value outside the structurally cloneable set was supplied."""


class MiddlewareError(SliceStoreError):
    """A slice middleware raised. The original error is the __cause__."""

    def __init__(self, slice_name: str, middleware_name: str) -> None:
        super().__init__(f'Middleware "{middleware_name}" failed on slice "{slice_name}"')
        self.slice_name = slice_name
        self.middleware_name = middleware_name


class DisposedError(SliceStoreError, RuntimeError):
    """Subscribing to a Computed after it was disposed."""
