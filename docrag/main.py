"""docrag FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` / environment variables and configures
structured logging.

Also exposes :func:`build_components` so the CLI can assemble the same
object graph without starting the web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from docrag import __version__
from docrag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from docrag.api.routes import router as api_router
from docrag.config.settings import Settings
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.interfaces.extraction_provider import IExtractionProvider
from docrag.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docrag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docrag.providers.extraction.local_extraction_provider import LocalExtractionProvider
from docrag.providers.extraction.vision_summary_provider import VisionSummaryExtractionProvider
from docrag.providers.job_store.sqlite_job_store import SQLiteJobStore
from docrag.providers.object_store.local_object_store import LocalObjectStore
from docrag.providers.vector_store.chromadb_vector_store import ChromaDBVectorStore
from docrag.services.chunker import TextChunker
from docrag.services.embedding_batcher import EmbeddingBatchProcessor
from docrag.services.index_writer import VectorIndexWriter
from docrag.services.ingestion_service import IngestionService
from docrag.services.job_state_machine import JobStateMachine
from docrag.services.legacy_retriever import LegacyFallbackRetriever
from docrag.services.retrieval_service import RetrievalService
from docrag.utils.errors import ConfigurationError
from docrag.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Embedding provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider.

    ``auto`` prefers OpenAI (if an API key is set) and otherwise uses
    Nomic/Ollama even when Ollama is not reachable yet: batches then fail
    and jobs stay searchable through the legacy retriever.

    Raises
    ------
    ConfigurationError
        If ``openai`` is selected explicitly without an API key.
    """
    choice = app_settings.embedding_provider
    if choice == "openai" or (choice == "auto" and app_settings.openai_api_key):
        if not app_settings.openai_api_key:
            raise ConfigurationError(
                "EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY",
                provider_name="openai_embedding",
            )
        return OpenAIEmbeddingProvider(settings=app_settings)
    return NomicEmbeddingProvider(settings=app_settings)


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
) -> dict[str, Any]:
    """Construct every provider and service; nothing touches the network.

    Parameters
    ----------
    app_settings:
        Loaded settings.
    embedding_provider:
        Overrides provider selection (tests use a deterministic one).

    Returns
    -------
    dict
        Components keyed by the ``app.state`` attribute they are stored on.
    """
    embedder = embedding_provider or _build_embedding_provider(app_settings)

    job_store = SQLiteJobStore(db_path=app_settings.job_db_path)
    object_store = LocalObjectStore(
        root=app_settings.object_store_root,
        public_base_url=app_settings.public_base_url,
        signing_secret=app_settings.upload_signing_secret,
        upload_ttl_seconds=app_settings.upload_url_ttl_seconds,
    )
    vector_store = ChromaDBVectorStore(
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
        embedding_dimension=embedder.get_dimension(),
    )
    extraction_provider: IExtractionProvider = LocalExtractionProvider(
        object_store=object_store,
        csv_max_chars=app_settings.csv_max_chars,
    )
    if app_settings.openai_api_key and app_settings.openai_vision_model:
        extraction_provider = VisionSummaryExtractionProvider(
            extraction_provider, object_store, app_settings
        )

    chunker = TextChunker(
        chunk_size=app_settings.chunk_size,
        overlap=app_settings.chunk_overlap,
        break_tolerance=app_settings.chunk_break_tolerance,
    )
    state_machine = JobStateMachine(job_store)
    ingestion_service = IngestionService.from_settings(
        job_store=job_store,
        state_machine=state_machine,
        object_store=object_store,
        extraction_provider=extraction_provider,
        chunker=chunker,
        embedding_batcher=EmbeddingBatchProcessor.from_settings(embedder, app_settings),
        index_writer=VectorIndexWriter(
            vector_store,
            write_batch_size=app_settings.vector_write_batch_size,
            write_timeout=app_settings.storage_write_timeout_seconds,
        ),
        vector_store=vector_store,
        settings=app_settings,
    )
    retrieval_service = RetrievalService.from_settings(
        job_store=job_store,
        vector_store=vector_store,
        embedding_provider=embedder,
        legacy_retriever=LegacyFallbackRetriever(
            chunker, max_windows=app_settings.legacy_windows_per_job
        ),
        settings=app_settings,
    )

    return {
        "settings": app_settings,
        "job_store": job_store,
        "object_store": object_store,
        "vector_store": vector_store,
        "embedding_provider": embedder,
        "extraction_provider": extraction_provider,
        "ingestion_service": ingestion_service,
        "retrieval_service": retrieval_service,
    }


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Components are built and the job store initialised in the lifespan
    handler, so constructing the app itself has no side effects on disk.
    """
    resolved = app_settings or Settings()
    configure_logging(
        log_level=resolved.log_level,
        json_output=(resolved.app_env == "production"),
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        components = build_components(resolved, embedding_provider=embedding_provider)
        for key, value in components.items():
            setattr(application.state, key, value)

        await components["job_store"].initialize()

        _logger.info(
            "app_startup",
            version=__version__,
            environment=resolved.app_env,
            embedding_provider=components["embedding_provider"].get_provider_name(),
            vector_store=components["vector_store"].get_provider_name(),
        )
        yield
        _logger.info("app_shutdown")

    application = FastAPI(
        title="docrag API",
        version=__version__,
        description=(
            "Register and upload documents, extract and index them into a "
            "vector store, and retrieve the most relevant chunks for a query."
        ),
        lifespan=_lifespan,
    )

    # Last added = first executed.
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


def run() -> None:
    """Start the API server with uvicorn."""
    app_settings = Settings()
    uvicorn.run(
        "docrag.main:create_app",
        factory=True,
        host=app_settings.app_host,
        port=app_settings.app_port,
        reload=(app_settings.app_env == "development"),
    )


if __name__ == "__main__":
    run()
