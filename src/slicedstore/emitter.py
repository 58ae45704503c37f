"""Emitter — ordered one-to-many notification with fault isolation.

Listeners run in registration order. A listener that raises does not stop
the fan-out: every listener still runs, and the first error is re-raised
once the pass is complete.

Usage:
    changes = Emitter()
    binding = changes.add(lambda v: print(v))
    changes.once(lambda v: print("first only", v))
    changes.emit(1)
    binding()  # detach
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Iterable, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]

logger = logging.getLogger("slicedstore.emitter")


class _Entry:
    __slots__ = ("listener", "once", "attached")

    def __init__(self, listener: Callable, once: bool) -> None:
        self.listener = listener
        self.once = once
        self.attached = True


class Binding:
    """Handle for one registration. Calling it detaches the listener."""

    __slots__ = ("_emitter", "_entry")

    def __init__(self, emitter: Emitter, entry: _Entry) -> None:
        self._emitter = emitter
        self._entry = entry

    @property
    def attached(self) -> bool:
        return self._entry.attached

    def detach(self) -> bool:
        """Remove this registration. Returns True if it was still attached."""
        return self._emitter._discard(self._entry)

    def dispose(self) -> None:
        self.detach()

    def __call__(self) -> None:
        self.detach()

    def __repr__(self) -> str:
        state = "attached" if self._entry.attached else "detached"
        return f"Binding({self._entry.listener!r}, {state})"


class Emitter(Generic[T]):
    """Typed pub/sub primitive.

    copy: optional function applied to the emitted value once per listener,
    so each listener receives its own payload.
    """

    __slots__ = ("_entries", "_copy")

    def __init__(self, copy: Callable[[Any], T] | None = None) -> None:
        self._entries: list[_Entry] = []
        self._copy = copy

    def add(self, listener: Listener[T]) -> Binding:
        """Register listener for every future emission."""
        return self._register(listener, once=False)

    def once(self, listener: Listener[T]) -> Binding:
        """Register listener for the next emission only.

        The registration is consumed before the listener runs, so it fires
        exactly once even if it raises or re-emits.
        """
        return self._register(listener, once=True)

    def remove(self, listener: Listener[T]) -> None:
        """Remove the first registration of listener. No-op if absent."""
        for entry in self._entries:
            if entry.listener == listener:
                self._discard(entry)
                return

    def emit(self, value: T) -> None:
        """Call every listener with value, then re-raise the first error."""
        first_error: BaseException | None = None
        for entry in list(self._entries):
            # Detached by an earlier listener during this pass.
            if not entry.attached:
                continue
            if entry.once:
                self._discard(entry)
            try:
                entry.listener(value if self._copy is None else self._copy(value))
            except Exception as err:
                if first_error is None:
                    first_error = err
                else:
                    logger.warning(
                        "Listener %r raised after an earlier listener failed",
                        entry.listener,
                        exc_info=True,
                    )
        if first_error is not None:
            raise first_error

    def clear(self) -> None:
        """Drop every registration."""
        for entry in self._entries:
            entry.attached = False
        self._entries.clear()

    @property
    def has_listeners(self) -> bool:
        return bool(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Emitter({len(self._entries)} listeners)"

    def _register(self, listener: Listener[T], once: bool) -> Binding:
        if not callable(listener):
            raise TypeError(f"listener must be callable, got {type(listener).__name__}")
        entry = _Entry(listener, once)
        self._entries.append(entry)
        return Binding(self, entry)

    def _discard(self, entry: _Entry) -> bool:
        if not entry.attached:
            return False
        entry.attached = False
        self._entries.remove(entry)
        return True


def emit_all(calls: Iterable[Callable[[], None]]) -> None:
    """Run a sequence of emissions with the same isolation as a single emit.

    Every call runs; the first error is re-raised after the last one.
    """
    first_error: BaseException | None = None
    for call in calls:
        try:
            call()
        except Exception as err:
            if first_error is None:
                first_error = err
            else:
                logger.warning("Notification %r raised after an earlier one failed", call, exc_info=True)
    if first_error is not None:
        raise first_error
