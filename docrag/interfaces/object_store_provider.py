"""Abstract base class for the raw-upload object store."""

from __future__ import annotations

from abc import ABC, abstractmethod

from docrag.models.job import UploadTarget


# Concrete implementation: LocalObjectStore (docrag/providers/object_store/)
class IObjectStoreProvider(ABC):
    """Contract for storing uploaded files.

    Every key is write-once: a second :meth:`put` to the same key fails.
    """

    @abstractmethod
    def create_upload_target(self, storage_key: str, job_id: str) -> UploadTarget:
        """Issue a pre-authorized, expiring destination for *storage_key*."""

    @abstractmethod
    def verify_upload_token(self, storage_key: str, token: str) -> bool:
        """Return ``True`` if *token* authorizes a write to *storage_key* now."""

    @abstractmethod
    async def put(self, storage_key: str, data: bytes) -> None:
        """Write *data* under *storage_key*.

        Raises
        ------
        docrag.utils.errors.StorageError
            If the key already holds an object or the write fails.
        """

    @abstractmethod
    async def get(self, storage_key: str) -> bytes:
        """Return the bytes stored under *storage_key*.

        Raises
        ------
        docrag.utils.errors.UploadNotFoundError
            If nothing was uploaded under the key.
        """

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Return ``True`` if an object is stored under *storage_key*."""

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Remove the object; returns ``False`` if there was none."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"local_object_store"``."""
