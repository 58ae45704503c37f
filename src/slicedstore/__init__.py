"""SlicedStore: feature-owned state slices with granular, batched notifications."""

from importlib.metadata import version as _version

__version__ = _version("slicedstore")

from slicedstore._batch import FieldChange
from slicedstore._clone import deep_clone, same_value
from slicedstore.emitter import Emitter, Binding
from slicedstore.computed import Computed
from slicedstore.slice import Middleware, SliceDefinition, SliceHandle, ReadonlySlice, define_slice
from slicedstore.store import Store
from slicedstore.errors import (
    SliceStoreError,
    SliceAlreadyRegisteredError,
    SliceNotRegisteredError,
    UnknownFieldError,
    NotCloneableError,
    MiddlewareError,
    DisposedError,
)

__all__ = [
    "Store",
    "SliceDefinition",
    "SliceHandle",
    "ReadonlySlice",
    "Middleware",
    "define_slice",
    "Emitter",
    "Binding",
    "Computed",
    "FieldChange",
    "deep_clone",
    "same_value",
    "SliceStoreError",
    "SliceAlreadyRegisteredError",
    "SliceNotRegisteredError",
    "UnknownFieldError",
    "NotCloneableError",
    "MiddlewareError",
    "DisposedError",
]
