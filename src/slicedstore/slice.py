"""Slices — feature-owned partitions of store state.

A feature declares its slice once with define_slice(), registers it into a
Store, and gets back a SliceHandle scoped to that slice:

    @dataclass
    class Wallet:
        balance: int = 1000
        bet: int = 1

    wallet = store.register(define_slice("wallet", Wallet(), middleware=[guard]))
    wallet.set("bet", 10)
    wallet.on("bet", lambda value, previous: ...)

Every write runs through the slice's middleware, is diffed against current
state by value identity, and then either notifies immediately (field ->
slice -> store) or is deferred into the store's active batch.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import functools
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Generic, Mapping, Optional, Sequence, TypeVar

from slicedstore._batch import FieldChange
from slicedstore._clone import deep_clone, is_leaf, same_value
from slicedstore.computed import Computed
from slicedstore.emitter import Binding, Emitter, emit_all
from slicedstore.errors import MiddlewareError, NotCloneableError, SliceNotRegisteredError, UnknownFieldError

if TYPE_CHECKING:
    from slicedstore.store import Store

S = TypeVar("S")
R = TypeVar("R")

# mw(current, incoming) -> transformed partial, or None to reject the write.
Middleware = Callable[[Mapping[str, Any], dict], Optional[Mapping[str, Any]]]

logger = logging.getLogger("slicedstore.slice")


@dataclasses.dataclass(frozen=True)
class SliceDefinition(Generic[S]):
    """Immutable declaration of a slice: name, default state, middleware."""

    name: str
    defaults: S
    middleware: tuple = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError(f"slice name must be a non-empty string, got {self.name!r}")
        middleware = tuple(self.middleware)
        for mw in middleware:
            if not callable(mw):
                raise TypeError(f'Slice "{self.name}": middleware must be callable, got {type(mw).__name__}')
        object.__setattr__(self, "middleware", middleware)


def define_slice(name: str, defaults: S, middleware: Sequence[Middleware] = ()) -> SliceDefinition[S]:
    """Declare a slice. Pure data, no side effects."""
    return SliceDefinition(name, defaults, tuple(middleware))


class _Shape:
    """Maps between a slice's declared type and its internal field dict."""

    __slots__ = ("cls",)

    def __init__(self, defaults: object) -> None:
        if _is_dataclass_instance(defaults):
            self.cls = type(defaults)
        elif isinstance(defaults, Mapping):
            bad = [k for k in defaults if not isinstance(k, str)]
            if bad:
                raise TypeError(f"slice field names must be strings, got {bad!r}")
            self.cls = None
        else:
            raise TypeError(f"slice defaults must be a mapping or a dataclass instance, got {type(defaults).__name__}")

    @staticmethod
    def to_fields(value: object) -> dict[str, Any]:
        if _is_dataclass_instance(value):
            return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        if isinstance(value, Mapping):
            return dict(value)
        raise TypeError(f"expected a mapping or a dataclass instance, got {type(value).__name__}")

    def build(self, fields: dict[str, Any]) -> Any:
        """Wrap an already-cloned field dict in the declared type."""
        if self.cls is None:
            return fields
        obj = object.__new__(self.cls)
        for key, value in fields.items():
            object.__setattr__(obj, key, value)
        return obj


def _is_dataclass_instance(value: object) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _middleware_name(mw: Callable, index: int) -> str:
    return getattr(mw, "__name__", None) or f"index {index}"


def _export(value: Any) -> Any:
    """Hand out a value without exposing internal containers."""
    return value if is_leaf(value) else deep_clone(value)


def _export_change(change: FieldChange) -> FieldChange:
    return FieldChange(_export(change.value), _export(change.previous))


class _StateView(collections.abc.Mapping):
    """Read-only field mapping that also allows attribute access.

    Handed to middleware (over a copy) and to derivations (over live state),
    so both work the same for mapping and dataclass slices.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: dict[str, Any]) -> None:
        object.__setattr__(self, "_fields", MappingProxyType(fields))

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self):
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._fields[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("slice state is read-only")

    def __repr__(self) -> str:
        return f"_StateView({dict(self._fields)!r})"


class SliceHandle(Generic[S]):
    """Read/write handle a feature uses for its own slice."""

    __slots__ = (
        "_name",
        "_store",
        "_shape",
        "_defaults",
        "_state",
        "_middleware",
        "_field_emitters",
        "_emitter",
        "_derived",
        "_derivations",
    )

    def __init__(self, store: Store, definition: SliceDefinition[S], shape: _Shape, defaults: dict[str, Any]) -> None:
        self._name = definition.name
        self._store = store
        self._shape = shape
        self._defaults = defaults
        self._state: dict[str, Any] = deep_clone(defaults)
        self._middleware = definition.middleware
        self._field_emitters: dict[str, Emitter[FieldChange]] = {}
        # Each slice listener gets its own deep copy; derivations share a read-only live view.
        self._emitter: Emitter[S] = Emitter(copy=self._copy_view)
        self._derivations: Emitter[_StateView] = Emitter()
        self._derived: dict[Computed, None] = {}

    @property
    def name(self) -> str:
        return self._name

    # --- Reads ---

    def get(self, key: str) -> Any:
        """Current value of one field. Containers come back as deep copies."""
        self._check_registered()
        if key not in self._state:
            raise UnknownFieldError(self._name, [key])
        return _export(self._state[key])

    def get_all(self) -> S:
        """Deep copy of the whole slice, in its declared type."""
        self._check_registered()
        return self._view()

    # --- Writes ---

    def set(self, key: str, value: Any) -> bool:
        """Write one field. Returns False if middleware rejected the write."""
        return key not in self.update({key: value})

    def update(self, partial: Mapping[str, Any]) -> list[str]:
        """Write several fields at once, all-or-nothing.

        Returns the incoming keys that were not applied: all of them if
        middleware rejected the write, otherwise the ones it dropped.
        """
        self._check_registered()
        if not isinstance(partial, Mapping):
            raise TypeError(f'Slice "{self._name}": update expects a mapping, got {type(partial).__name__}')
        incoming = self._known_fields(dict(partial), "update")

        processed = self._run_middleware(incoming)
        if processed is None:
            return list(partial)
        processed = self._known_fields(processed, "middleware output")

        rejected = [key for key in partial if key not in processed]
        changed = {key: value for key, value in processed.items() if not same_value(self._state[key], value)}
        if changed:
            self._apply(self._clone(changed, "update"))
        return rejected

    def batch(self, partial: Mapping[str, Any]) -> list[str]:
        """Alias of update(): one write, one notification round."""
        return self.update(partial)

    def reset(self) -> list[str]:
        """Write every default back through the normal update path."""
        self._check_registered()
        return self.update(deep_clone(self._defaults))

    # --- Subscriptions ---

    def on(self, key: str, callback: Callable[[Any, Any], None], *, once: bool = False) -> Binding:
        """Subscribe to one field. callback(value, previous).

        The returned Binding unsubscribes when called.
        """
        self._check_registered()
        if key not in self._state:
            raise UnknownFieldError(self._name, [key])
        emitter = self._field_emitters.get(key)
        if emitter is None:
            emitter = self._field_emitters[key] = Emitter(copy=_export_change)

        def listener(change: FieldChange) -> None:
            callback(change.value, change.previous)

        return emitter.once(listener) if once else emitter.add(listener)

    @property
    def on_change(self) -> Emitter[S]:
        """Fires with the full slice state whenever any field changes."""
        self._check_registered()
        return self._emitter

    def computed(self, fn: Callable[[S], R]) -> Computed[R]:
        """Derive a memoized value from this slice.

        fn receives a read-only view of the live state (item or attribute
        access) and is re-run on every slice notification. Unchanged fields
        keep their identity, so subscribers only hear about results that
        differ by value identity from the previous one. The cached value is
        a copy of the result.
        """
        self._check_registered()
        binding: Binding | None = None
        last = fn(self._live_view())

        def detach() -> None:
            if binding is not None:
                binding.detach()
            self._derived.pop(derived, None)

        derived: Computed[R] = Computed(last, detach, copy=_export)

        def recompute(view: _StateView) -> None:
            nonlocal last
            result = fn(view)
            if not same_value(result, last):
                last = result
                derived._emit(result)

        binding = self._derivations.add(recompute)
        self._derived[derived] = None
        return derived

    # --- Internals used by Store ---

    def _view(self) -> S:
        return self._copy_view(self._state)

    def _copy_view(self, fields: dict[str, Any]) -> S:
        return self._shape.build(deep_clone(fields))

    def _live_view(self) -> _StateView:
        return _StateView(self._state)

    def _check_registered(self) -> None:
        if self._store._slices.get(self._name) is not self:
            raise SliceNotRegisteredError(self._name)

    def _known_fields(self, partial: dict[str, Any], source: str) -> dict[str, Any]:
        unknown = [key for key in partial if key not in self._state]
        if not unknown:
            return partial
        if self._store.strict_fields:
            raise UnknownFieldError(self._name, unknown)
        logger.warning('Slice "%s": dropping unknown field(s) %s from %s', self._name, unknown, source)
        return {key: value for key, value in partial.items() if key in self._state}

    def _run_middleware(self, partial: dict[str, Any]) -> dict[str, Any] | None:
        current = _StateView(deep_clone(self._state))
        for index, mw in enumerate(self._middleware):
            try:
                result = mw(current, dict(partial))
                if result is None:
                    logger.debug('Slice "%s": write rejected by %s', self._name, _middleware_name(mw, index))
                    return None
                partial = dict(result)
            except Exception as err:
                raise MiddlewareError(self._name, _middleware_name(mw, index)) from err
        return partial

    def _clone(self, values: dict[str, Any], operation: str) -> dict[str, Any]:
        try:
            return deep_clone(values)
        except NotCloneableError as err:
            raise NotCloneableError(f'Slice "{self._name}": {operation} values must be cloneable ({err})') from err

    def _replace(self, fields: dict[str, Any]) -> None:
        """Swap in a complete, already-cloned state through the diff path."""
        changed = {key: value for key, value in fields.items() if not same_value(self._state[key], value)}
        if changed:
            self._apply(changed)

    def _apply(self, changed: dict[str, Any]) -> None:
        batch = self._store._batch
        if batch.active:
            batch.capture(self._name, self._state)
        diffs = {key: FieldChange(value, self._state[key]) for key, value in changed.items()}
        self._state.update(changed)

        if batch.active:
            batch.record(self._name, diffs)
            return
        emit_all([*self._notifications(diffs), self._store._emit_global])

    def _notifications(self, diffs: Mapping[str, FieldChange]) -> list[Callable[[], None]]:
        """Field emissions in field order, then the slice emission."""
        calls: list[Callable[[], None]] = []
        for key, change in diffs.items():
            emitter = self._field_emitters.get(key)
            if emitter is not None and emitter.has_listeners:
                calls.append(functools.partial(emitter.emit, change))
        calls.append(self._emit_slice)
        return calls

    def _emit_slice(self) -> None:
        calls: list[Callable[[], None]] = []
        if self._emitter.has_listeners:
            calls.append(functools.partial(self._emitter.emit, dict(self._state)))
        if self._derivations.has_listeners:
            calls.append(functools.partial(self._derivations.emit, self._live_view()))
        emit_all(calls)

    def _dispose_derived(self) -> None:
        for derived in list(self._derived):
            derived.dispose()
        self._derived.clear()

    def _clear_subscriptions(self) -> None:
        self._dispose_derived()
        self._derivations.clear()
        self._emitter.clear()
        for emitter in self._field_emitters.values():
            emitter.clear()
        self._field_emitters.clear()

    def __repr__(self) -> str:
        return f"SliceHandle({self._name!r}, {self._state!r})"


class ReadonlySlice(Generic[S]):
    """Frozen read-only projection of another feature's slice."""

    __slots__ = ("_handle",)

    def __init__(self, handle: SliceHandle[S]) -> None:
        object.__setattr__(self, "_handle", handle)

    @property
    def name(self) -> str:
        return self._handle.name

    def get(self, key: str) -> Any:
        return self._handle.get(key)

    def get_all(self) -> S:
        return self._handle.get_all()

    def on(self, key: str, callback: Callable[[Any, Any], None], *, once: bool = False) -> Binding:
        return self._handle.on(key, callback, once=once)

    @property
    def on_change(self) -> Emitter[S]:
        return self._handle.on_change

    def computed(self, fn: Callable[[S], R]) -> Computed[R]:
        return self._handle.computed(fn)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"{type(self).__name__} is read-only")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is read-only")

    def __repr__(self) -> str:
        return f"ReadonlySlice({self._handle.name!r})"
