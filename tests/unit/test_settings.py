"""Unit tests for Settings budget validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from docrag.config.settings import Settings


def test_defaults_load() -> None:
    settings = Settings(_env_file=None)
    assert settings.chunk_size == 2000
    assert settings.chunk_overlap == 150
    assert settings.embedding_batch_size == 100
    assert settings.pipeline_timeout_seconds > settings.embedding_overall_timeout_seconds


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("CHUNK_SIZE", "500")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "openai")
    settings = Settings(_env_file=None)
    assert settings.chunk_size == 500
    assert settings.embedding_provider == "openai"


@pytest.mark.parametrize(
    "overrides",
    [
        {"chunk_size": 100, "chunk_overlap": 100},
        {"chunk_overlap": -1},
        {"chunk_size": 0},
        {"embedding_batch_size": 0},
        {"embedding_max_retries": -1},
        {"pipeline_timeout_seconds": 300.0, "embedding_overall_timeout_seconds": 300.0},
    ],
)
def test_invalid_budgets_refuse_to_load(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_unknown_provider_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, embedding_provider="cohere")


def test_available_embedding_providers() -> None:
    assert Settings(_env_file=None, openai_api_key="").get_available_embedding_providers() == [
        "nomic"
    ]
    assert "openai" in Settings(
        _env_file=None, openai_api_key="sk-test"
    ).get_available_embedding_providers()
