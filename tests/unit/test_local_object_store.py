"""Unit tests for LocalObjectStore -- signed upload targets and write-once I/O."""

from __future__ import annotations

import time
from urllib.parse import parse_qs, urlparse

import pytest

from docrag.providers.object_store.local_object_store import LocalObjectStore, sign_upload
from docrag.utils.errors import StorageError, UploadNotFoundError


class TestUploadTokens:
    def test_target_points_at_content_endpoint(self, object_store) -> None:
        target = object_store.create_upload_target("incoming/abc-notes.txt", "job-1")
        url = urlparse(target.upload_url)

        assert url.netloc == "testserver"
        assert url.path == "/api/v1/uploads/job-1/content"
        assert parse_qs(url.query)["token"] == [target.upload_token]
        assert target.storage_key == "incoming/abc-notes.txt"

    def test_token_verifies_for_its_key_only(self, object_store) -> None:
        target = object_store.create_upload_target("incoming/a.txt", "job-1")

        assert object_store.verify_upload_token("incoming/a.txt", target.upload_token)
        assert not object_store.verify_upload_token("incoming/b.txt", target.upload_token)

    def test_tampered_signature_rejected(self, object_store) -> None:
        token = object_store.create_upload_target("incoming/a.txt", "job-1").upload_token
        expires, signature = token.split(":", 1)
        forged = f"{expires}:{'0' * len(signature)}"
        assert not object_store.verify_upload_token("incoming/a.txt", forged)

    def test_extended_expiry_invalidates_signature(self, object_store) -> None:
        token = object_store.create_upload_target("incoming/a.txt", "job-1").upload_token
        expires, signature = token.split(":", 1)
        assert not object_store.verify_upload_token(
            "incoming/a.txt", f"{int(expires) + 3600}:{signature}"
        )

    def test_expired_token_rejected(self, object_store) -> None:
        expired = sign_upload("test-secret", "incoming/a.txt", int(time.time()) - 5)
        assert not object_store.verify_upload_token("incoming/a.txt", expired)

    @pytest.mark.parametrize("token", ["", "garbage", "soon:abc"])
    def test_malformed_tokens_rejected(self, object_store, token: str) -> None:
        assert not object_store.verify_upload_token("incoming/a.txt", token)

    def test_other_secret_rejected(self, tmp_path) -> None:
        other = LocalObjectStore(tmp_path, "http://x", signing_secret="different")
        token = other.create_upload_target("incoming/a.txt", "job-1").upload_token
        store = LocalObjectStore(tmp_path, "http://x", signing_secret="test-secret")
        assert not store.verify_upload_token("incoming/a.txt", token)


class TestObjectIO:
    @pytest.mark.asyncio
    async def test_put_then_get(self, object_store) -> None:
        await object_store.put("incoming/a.txt", b"hello")

        assert await object_store.exists("incoming/a.txt") is True
        assert await object_store.get("incoming/a.txt") == b"hello"

    @pytest.mark.asyncio
    async def test_keys_are_write_once(self, object_store) -> None:
        await object_store.put("incoming/a.txt", b"first")
        with pytest.raises(StorageError):
            await object_store.put("incoming/a.txt", b"second")
        assert await object_store.get("incoming/a.txt") == b"first"

    @pytest.mark.asyncio
    async def test_missing_object(self, object_store) -> None:
        assert await object_store.exists("incoming/none.txt") is False
        with pytest.raises(UploadNotFoundError):
            await object_store.get("incoming/none.txt")

    @pytest.mark.asyncio
    async def test_delete(self, object_store) -> None:
        await object_store.put("incoming/a.txt", b"x")

        assert await object_store.delete("incoming/a.txt") is True
        assert await object_store.delete("incoming/a.txt") is False
        assert await object_store.exists("incoming/a.txt") is False

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, object_store) -> None:
        with pytest.raises(StorageError):
            await object_store.put("../outside.txt", b"x")
