"""Vector store adapters."""

from docrag.providers.vector_store.chromadb_vector_store import ChromaDBVectorStore

__all__ = ["ChromaDBVectorStore"]
