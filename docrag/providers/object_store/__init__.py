"""Object store adapters."""

from docrag.providers.object_store.local_object_store import LocalObjectStore

__all__ = ["LocalObjectStore"]
