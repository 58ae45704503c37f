"""Store — registry of feature slices with batched, transactional notification.

Each feature registers its slice and keeps the returned handle; other
features get a read-only view through store.slice(name). The store owns the
single batch context: writes made inside batch() are applied immediately but
notified once, after the outermost batch returns, and are rolled back if it
raises.

    store = Store()
    wallet = store.register(define_slice("wallet", {"balance": 1000, "bet": 1}))

    with store.transaction():
        wallet.set("bet", 10)
        wallet.set("balance", 990)
    # field, slice and store listeners fire here, once each
"""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping, ParamSpec, TypeVar

from slicedstore._batch import BatchContext
from slicedstore._clone import deep_clone
from slicedstore.emitter import Emitter, emit_all
from slicedstore.errors import NotCloneableError, SliceAlreadyRegisteredError, SliceNotRegisteredError
from slicedstore.slice import ReadonlySlice, SliceDefinition, SliceHandle, _Shape

P = ParamSpec("P")
R = TypeVar("R")
S = TypeVar("S")

logger = logging.getLogger("slicedstore.store")


def _copy_state(state: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType({name: deep_clone(value) for name, value in state.items()})


class Store:
    """Central container of named slices.

    strict_fields: when True (the default), writing or subscribing to a
    field a slice does not declare raises UnknownFieldError. When False,
    unknown fields in writes are dropped with a warning.
    """

    def __init__(self, *, strict_fields: bool = True) -> None:
        self.strict_fields = strict_fields
        self._slices: dict[str, SliceHandle] = {}
        self._batch = BatchContext()
        self._on_change: Emitter[Mapping[str, Any]] = Emitter(copy=_copy_state)

    @property
    def on_change(self) -> Emitter[Mapping[str, Any]]:
        """Fires when any slice changes. Payload is get_state()."""
        return self._on_change

    # --- Registry ---

    def register(self, definition: SliceDefinition[S]) -> SliceHandle[S]:
        """Register a feature's slice and return its handle."""
        name = definition.name
        if name in self._slices:
            raise SliceAlreadyRegisteredError(name)

        shape = _Shape(definition.defaults)
        try:
            defaults = deep_clone(shape.to_fields(definition.defaults))
        except NotCloneableError as err:
            raise NotCloneableError(f'Slice "{name}": defaults must be cloneable ({err})') from err

        handle = SliceHandle(self, definition, shape, defaults)
        self._slices[name] = handle
        logger.debug('Registered slice "%s" with fields %s', name, list(defaults))
        return handle

    def unregister(self, name: str) -> None:
        """Remove a slice, disposing its computed values and subscriptions."""
        handle = self._slices.pop(name, None)
        if handle is None:
            return
        handle._clear_subscriptions()
        self._batch.discard(name)
        logger.debug('Unregistered slice "%s"', name)

    def slice(self, name: str) -> ReadonlySlice:
        """Read-only view of a slice, for cross-feature reads."""
        return ReadonlySlice(self._get_handle(name))

    def has(self, name: str) -> bool:
        return name in self._slices

    @property
    def slice_names(self) -> list[str]:
        """Registered slice names, in registration order."""
        return list(self._slices)

    def __contains__(self, name: object) -> bool:
        return name in self._slices

    def __len__(self) -> int:
        return len(self._slices)

    # --- Batching ---

    def batch(self, fn: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
        """Run fn as one transaction and return its result.

        Writes inside fn change state immediately, but field, slice and store
        notifications are deferred until the outermost batch returns, then
        fire once per changed field, once per dirty slice, and once for the
        store. Nested calls run inline inside the active batch.

        If fn raises, every slice it touched is restored to its pre-batch
        state, nothing is notified, and the error propagates unchanged. Code
        that runs inside the batch (middleware, or listeners called by
        something other than this store) can still observe the intermediate
        values that the rollback later discards.
        """
        if self._batch.active:
            return fn(*args, **kwargs)

        self._batch.begin()
        try:
            result = fn(*args, **kwargs)
        except BaseException:
            self._rollback()
            raise

        self._flush()
        return result

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Context manager form of batch().

        Usage:
            with store.transaction():
                wallet.set("bet", 10)
                spins.set("remaining", 5)
        """
        if self._batch.active:
            yield
            return

        self._batch.begin()
        try:
            yield
        except BaseException:
            self._rollback()
            raise
        self._flush()

    def action(self, fn: Callable[P, R]) -> Callable[P, R]:
        """Decorator: every call of fn runs as a batch.

        Usage:
            @store.action
            def place_bet(amount):
                wallet.update({"bet": amount, "balance": wallet.get("balance") - amount})
        """

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            return self.batch(fn, *args, **kwargs)

        return wrapper

    def _rollback(self) -> None:
        snapshots = self._batch.snapshots
        for name, state in snapshots.items():
            handle = self._slices.get(name)
            if handle is not None:
                handle._state = state
        self._batch.clear()
        logger.debug("Batch failed; rolled back %d slice(s)", len(snapshots))

    def _flush(self) -> None:
        """Close the batch and deliver its accumulated notifications."""
        pending = self._batch.pending
        dirty = [self._slices[name] for name in self._batch.dirty if name in self._slices]
        # Close first: listeners that write during the flush notify directly.
        self._batch.clear()
        if not dirty:
            return

        field_calls: list[Callable[[], None]] = []
        slice_calls: list[Callable[[], None]] = []
        for handle in dirty:
            *fields, emit_slice = handle._notifications(pending.get(handle.name, {}))
            field_calls.extend(fields)
            slice_calls.append(emit_slice)
        emit_all([*field_calls, *slice_calls, self._emit_global])

    def _emit_global(self) -> None:
        if self._on_change.has_listeners:
            self._on_change.emit(self.get_state())

    # --- State ---

    def get_state(self) -> Mapping[str, Any]:
        """Read-only mapping of slice name to a deep copy of its state."""
        return MappingProxyType({name: handle._view() for name, handle in self._slices.items()})

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Plain, deep-copied {slice: {field: value}} data for restore()."""
        return {name: deep_clone(handle._state) for name, handle in self._slices.items()}

    def restore(self, data: Mapping[str, Any]) -> None:
        """Replace the state of every registered slice named in data.

        Unknown slice names are ignored and slices absent from data are left
        alone. Fields missing from a slice's data take their defaults; fields
        the slice does not declare are dropped. All data is cloned before
        any slice changes, and the whole restore notifies as one batch.
        """
        replacements: dict[str, dict[str, Any]] = {}
        for name, slice_data in data.items():
            handle = self._slices.get(name)
            if handle is None:
                continue
            try:
                fields = _Shape.to_fields(slice_data)
            except TypeError:
                logger.warning('Restore: skipping slice "%s", data is %s', name, type(slice_data).__name__)
                continue
            unknown = [key for key in fields if key not in handle._defaults]
            if unknown:
                logger.warning('Restore: dropping unknown field(s) %s of slice "%s"', unknown, name)
            merged = {key: fields.get(key, default) for key, default in handle._defaults.items()}
            try:
                replacements[name] = deep_clone(merged)
            except NotCloneableError as err:
                raise NotCloneableError(f'Slice "{name}": restore data must be cloneable ({err})') from err

        def apply() -> None:
            for name, fields in replacements.items():
                self._slices[name]._replace(fields)

        self.batch(apply)

    def reset_state(self) -> None:
        """Return every slice to its defaults. Subscriptions are kept."""

        def apply() -> None:
            for handle in self._slices.values():
                handle._replace(deep_clone(handle._defaults))

        self.batch(apply)

    def reset(self) -> None:
        """Hard reset: defaults everywhere and every subscription dropped.

        Computed values are disposed and no notification is sent. Inside a
        batch, pending notifications are dropped, but a batch that raises
        still rolls every slice back to its pre-batch state.
        """
        for name, handle in self._slices.items():
            handle._clear_subscriptions()
            if self._batch.active:
                self._batch.capture(name, handle._state)
            handle._state = deep_clone(handle._defaults)
            self._batch.discard(name, keep_snapshot=True)
        self._on_change.clear()
        logger.debug("Store reset: %d slice(s)", len(self._slices))

    def _get_handle(self, name: str) -> SliceHandle:
        handle = self._slices.get(name)
        if handle is None:
            raise SliceNotRegisteredError(name)
        return handle

    def __repr__(self) -> str:
        return f"Store({self.slice_names!r})"
