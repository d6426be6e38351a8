"""Filesystem object store with HMAC-signed, expiring upload targets.

Raw uploads live under ``object_store_root`` at their storage key
(``incoming/<uuid>-<file name>``).  Registration hands the caller an upload
URL pointing at ``PUT /api/v1/uploads/{job_id}/content`` with a token of the
form ``{expires_epoch}:{hmac_hex}`` where the HMAC-SHA256 covers
``{storage_key}:{expires_epoch}``.  Keys are write-once.

Blocking file I/O runs in ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import time
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

import structlog

from docrag.interfaces.object_store_provider import IObjectStoreProvider
from docrag.models.job import UploadTarget
from docrag.utils.errors import StorageError, UploadNotFoundError

logger = structlog.get_logger(logger_name=__name__)


def sign_upload(secret: str, storage_key: str, expires_at: int) -> str:
    """Return ``{expires_at}:{hmac_hex}`` authorizing a write to *storage_key*."""
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{storage_key}:{expires_at}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{expires_at}:{signature}"


class LocalObjectStore(IObjectStoreProvider):
    """Object store backed by a local directory."""

    def __init__(
        self,
        root: str | Path,
        public_base_url: str,
        signing_secret: str,
        upload_ttl_seconds: int = 900,
    ) -> None:
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret
        self._ttl = upload_ttl_seconds

    def _path_for(self, storage_key: str) -> Path:
        path = (self._root / storage_key).resolve()
        if self._root not in path.parents:
            raise StorageError(
                message=f"Storage key escapes the store root: {storage_key!r}",
                provider_name=self.get_provider_name(),
            )
        return path

    # ------------------------------------------------------------------
    # Upload targets
    # ------------------------------------------------------------------

    def create_upload_target(self, storage_key: str, job_id: str) -> UploadTarget:
        expires_at = int(time.time()) + self._ttl
        token = sign_upload(self._secret, storage_key, expires_at)
        url = (
            f"{self._public_base_url}/api/v1/uploads/{quote(job_id, safe='')}/content"
            f"?token={quote(token, safe='')}"
        )
        return UploadTarget(
            storage_key=storage_key,
            upload_url=url,
            upload_token=token,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),  # noqa: UP017
        )

    def verify_upload_token(self, storage_key: str, token: str) -> bool:
        if not token or ":" not in token:
            return False
        expires_str, provided = token.split(":", 1)
        try:
            expires_at = int(expires_str)
        except ValueError:
            return False
        if expires_at < int(time.time()):
            return False
        expected = sign_upload(self._secret, storage_key, expires_at)
        return hmac.compare_digest(expected, token)

    # ------------------------------------------------------------------
    # Object I/O
    # ------------------------------------------------------------------

    def _write_once(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("xb") as fh:
            fh.write(data)

    async def put(self, storage_key: str, data: bytes) -> None:
        path = self._path_for(storage_key)
        try:
            await asyncio.to_thread(self._write_once, path, data)
        except FileExistsError as exc:
            raise StorageError(
                message=f"Object already uploaded: {storage_key}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to write {storage_key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("object_stored", storage_key=storage_key, size=len(data))

    async def get(self, storage_key: str) -> bytes:
        path = self._path_for(storage_key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise UploadNotFoundError(
                message=f"No object stored at {storage_key}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to read {storage_key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def exists(self, storage_key: str) -> bool:
        path = self._path_for(storage_key)
        return await asyncio.to_thread(path.is_file)

    async def delete(self, storage_key: str) -> bool:
        path = self._path_for(storage_key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.info("object_deleted", storage_key=storage_key)
        return True

    def get_provider_name(self) -> str:
        return "local_object_store"
