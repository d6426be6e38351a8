"""Abstract base class for text-embedding service providers.

Implementations wrap OpenAI ``text-embedding-3-small`` or Nomic
``nomic-embed-text`` (local via Ollama).  The same provider embeds chunks at
ingestion time and queries at retrieval time, so both sides share one
vector space and one metric (cosine).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (docrag/providers/embedding/):
#   OpenAIEmbeddingProvider  -- text-embedding-3-small / -large (requires API key)
#   NomicEmbeddingProvider   -- nomic-embed-text via Ollama (local)
class IEmbeddingProvider(ABC):
    """Contract for embedding-model collaborators.

    A call either returns exactly one vector per input, in input order, or
    raises for the whole batch.  Partial success is modelled one level up,
    across batches, by the
    :class:`~docrag.services.embedding_batcher.EmbeddingBatchProcessor`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Strings to embed.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*, each of length
            :meth:`get_dimension`.

        Raises
        ------
        docrag.utils.errors.EmbeddingError
            If the call fails for any item.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one string (e.g. a retrieval query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the produced vectors.

        Constant for the lifetime of the provider and equal to the length
        of the vectors stored in the index.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
