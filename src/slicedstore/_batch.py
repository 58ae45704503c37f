"""Batch context — the record of one outermost Store.batch() call.

While active, slice writes are applied to state immediately but their
notifications are deferred here: pending field diffs accumulate per slice,
and each touched slice's pre-batch state is captured once so the batch can
be rolled back if its body raises.

Nested batches share the active context; they never re-snapshot.
"""

from __future__ import annotations

from typing import Any, NamedTuple

from slicedstore._clone import deep_clone


class FieldChange(NamedTuple):
    """Payload of a field-level notification."""

    value: Any
    previous: Any


class BatchContext:
    """Single active transaction record owned by a Store."""

    __slots__ = ("active", "snapshots", "dirty", "pending")

    def __init__(self) -> None:
        self.active = False
        # slice name -> deep copy of its state before the first write
        self.snapshots: dict[str, dict[str, Any]] = {}
        # insertion-ordered set of dirty slice names
        self.dirty: dict[str, None] = {}
        # slice name -> field -> FieldChange(latest value, first previous)
        self.pending: dict[str, dict[str, FieldChange]] = {}

    def begin(self) -> None:
        self.clear()
        self.active = True

    def capture(self, name: str, state: dict[str, Any]) -> None:
        """Snapshot state for rollback, only on the slice's first write."""
        if name not in self.snapshots:
            self.snapshots[name] = deep_clone(state)

    def record(self, name: str, changes: dict[str, FieldChange]) -> None:
        """Merge field diffs, keeping the first previous and the latest value."""
        fields = self.pending.setdefault(name, {})
        for key, change in changes.items():
            existing = fields.get(key)
            if existing is None:
                fields[key] = change
            else:
                fields[key] = FieldChange(change.value, existing.previous)
        self.dirty[name] = None

    def discard(self, name: str, *, keep_snapshot: bool = False) -> None:
        """Forget the pending notifications (and snapshot) of a slice."""
        if not keep_snapshot:
            self.snapshots.pop(name, None)
        self.pending.pop(name, None)
        self.dirty.pop(name, None)

    def clear(self) -> None:
        self.active = False
        self.snapshots = {}
        self.dirty = {}
        self.pending = {}
