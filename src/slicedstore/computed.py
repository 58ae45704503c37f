"""Computed values — memoized state derived from a slice.

A Computed caches the last result of a derivation and notifies its own
subscribers only when that result changes. It rides on an upstream
subscription supplied by its creator; dispose() severs that subscription.

Usage:
    total = wallet.computed(lambda s: s.balance * s.bet)
    total.value           # cached, no recomputation
    total.add(print)      # fires only when the product changes
    total.dispose()
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from slicedstore.emitter import Binding, Emitter
from slicedstore.errors import DisposedError

T = TypeVar("T")


class Computed(Generic[T]):
    """Read-only derived value with disposal semantics.

    copy: optional function applied whenever the value is handed out, on
    every read of value and once per listener.
    """

    __slots__ = ("_value", "_detach", "_disposed", "_emitter", "_copy")

    def __init__(self, value: T, detach: Callable[[], None], copy: Callable[[T], T] | None = None) -> None:
        self._value = value
        self._detach: Callable[[], None] | None = detach
        self._disposed = False
        self._copy = copy
        self._emitter: Emitter[T] = Emitter(copy=copy)

    @property
    def value(self) -> T:
        return self._value if self._copy is None else self._copy(self._value)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def has_listeners(self) -> bool:
        return self._emitter.has_listeners

    def add(self, listener: Callable[[T], None]) -> Binding:
        self._check_alive()
        return self._emitter.add(listener)

    def once(self, listener: Callable[[T], None]) -> Binding:
        self._check_alive()
        return self._emitter.once(listener)

    def remove(self, listener: Callable[[T], None]) -> None:
        self._emitter.remove(listener)

    def _emit(self, value: T) -> None:
        """Store a new result and notify. Silently ignored once disposed."""
        if self._disposed:
            return
        self._value = value
        self._emitter.emit(value)

    def dispose(self) -> None:
        """Detach from the upstream source and drop all subscribers."""
        if self._disposed:
            return
        self._disposed = True
        detach, self._detach = self._detach, None
        try:
            if detach is not None:
                detach()
        finally:
            self._emitter.clear()

    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedError("Cannot add listener to a disposed Computed")

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"value={self._value!r}"
        return f"Computed({state})"
