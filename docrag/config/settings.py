"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first) environment variables, then a
``.env`` file in the working directory, then the defaults below.  Field
``openai_api_key`` maps to ``OPENAI_API_KEY`` and so on.

Pipeline budgets are validated at startup: a chunk overlap that is not
strictly smaller than the chunk size, or a pipeline ceiling that does not
leave room for the embedding budget, refuses to load.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docrag application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Embedding Providers ===
    # Empty string = "not configured"; main.py skips providers with empty keys.
    embedding_provider: Literal["auto", "openai", "nomic"] = "auto"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible gateways
    openai_embedding_model: str = "text-embedding-3-small"
    # Vision summaries for image uploads; leave empty to disable.
    openai_vision_model: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # === Storage ===
    job_db_path: str = "data/jobs.db"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "docrag_chunks"
    object_store_root: str = "data/objects"

    # === Uploads ===
    public_base_url: str = "http://localhost:8000"
    upload_signing_secret: str = "change-me"
    upload_url_ttl_seconds: int = 900
    max_upload_bytes: int = 50 * 1024 * 1024

    # === Chunking ===
    chunk_size: int = 2000
    chunk_overlap: int = 150
    chunk_break_tolerance: int = 200

    # === Embedding batches ===
    embedding_batch_size: int = 100
    embedding_batch_timeout_seconds: float = 30.0
    embedding_overall_timeout_seconds: float = 300.0
    embedding_max_retries: int = 1
    embedding_retry_backoff_seconds: float = 2.0

    # === Pipeline budgets ===
    extraction_timeout_seconds: float = 120.0
    storage_write_timeout_seconds: float = 15.0
    vector_write_batch_size: int = 100
    # Hard ceiling per worker invocation; must exceed the embedding budget.
    pipeline_timeout_seconds: float = 330.0
    csv_max_chars: int = 500_000

    # === Retrieval ===
    query_embedding_timeout_seconds: float = 15.0
    retrieval_default_top_k: int = 5
    retrieval_max_top_k: int = 50
    legacy_windows_per_job: int = 3

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_budgets(self) -> "Settings":
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be >= 0 and strictly "
                f"less than chunk_size ({self.chunk_size})"
            )
        if self.embedding_batch_size <= 0:
            raise ValueError("embedding_batch_size must be positive")
        if self.embedding_max_retries < 0:
            raise ValueError("embedding_max_retries must be >= 0")
        if self.pipeline_timeout_seconds <= self.embedding_overall_timeout_seconds:
            raise ValueError(
                "pipeline_timeout_seconds must exceed embedding_overall_timeout_seconds"
            )
        return self

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have the configuration they need."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("nomic")
        return providers
