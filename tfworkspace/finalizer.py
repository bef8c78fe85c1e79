"""A finalizer that removes a resource's workspace before releasing it."""

from __future__ import annotations

from typing import Any, Protocol

ERR_REMOVE_WORKSPACE = "cannot remove workspace from the store"


class StoreCleaner(Protocol):
    """A workspace store that can drop the workspace of an object."""

    def remove(self, obj: Any) -> None: ...


class Finalizer(Protocol):
    """Adds and removes finalizers on managed objects."""

    def add_finalizer(self, obj: Any) -> None: ...

    def remove_finalizer(self, obj: Any) -> None: ...


class WorkspaceFinalizer:
    """Removes the workspace from the store, then the underlying finalizer."""

    def __init__(self, store: StoreCleaner, finalizer: Finalizer) -> None:
        self.store = store
        self.finalizer = finalizer

    def add_finalizer(self, obj: Any) -> None:
        """Add the finalizer to the given object."""
        self.finalizer.add_finalizer(obj)

    def remove_finalizer(self, obj: Any) -> None:
        """Remove the workspace from the store, then the finalizer."""
        try:
            self.store.remove(obj)
        except Exception as exc:
            raise RuntimeError(f"{ERR_REMOVE_WORKSPACE}: {exc}") from exc
        self.finalizer.remove_finalizer(obj)