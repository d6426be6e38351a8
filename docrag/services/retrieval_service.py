"""Query-time retrieval over indexed and extracted jobs.

For each query the candidate jobs (explicit ids, or all of the owner's
jobs) are narrowed to queryable ones and split by what they have:

- jobs with chunk rows are searched by vector similarity (cosine, clamped
  to 0..1) and the optional similarity floor applies to them;
- jobs with no chunk rows but with extracted content go through the
  :class:`LegacyFallbackRetriever`;
- if the query cannot be embedded or the vector store cannot be searched,
  every candidate goes through the legacy path instead.

Both result sets share one 0..1 score scale and are merged, then ordered by
score descending, chunk index ascending, job id ascending, which makes the
ranking reproducible for a fixed index state.  A query with no candidate
content returns an empty result flagged ``no_queryable_documents``; it
never raises for collaborator failures.
"""

from __future__ import annotations

import structlog

from docrag.config.settings import Settings
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.interfaces.job_store_provider import IJobStore
from docrag.interfaces.vector_store_provider import IVectorStoreProvider
from docrag.models.job import QUERYABLE_STAGES, ProcessingJob
from docrag.models.rag import (
    RetrievalResult,
    RetrievedChunk,
    ScoredChunk,
    SearchMode,
    context_ref_for,
)
from docrag.services.legacy_retriever import LegacyFallbackRetriever
from docrag.utils.deadlines import with_deadline

logger = structlog.get_logger(logger_name=__name__)


def _rank_key(chunk: RetrievedChunk) -> tuple[float, int, str]:
    return (-chunk.similarity_score, chunk.chunk_index, chunk.job_id)


class RetrievalService:
    """Ranks chunks from candidate jobs for a natural-language query."""

    def __init__(
        self,
        job_store: IJobStore,
        vector_store: IVectorStoreProvider,
        embedding_provider: IEmbeddingProvider,
        legacy_retriever: LegacyFallbackRetriever,
        default_top_k: int = 5,
        max_top_k: int = 50,
        query_timeout: float = 15.0,
    ) -> None:
        self._jobs = job_store
        self._vectors = vector_store
        self._embedder = embedding_provider
        self._legacy = legacy_retriever
        self._default_top_k = default_top_k
        self._max_top_k = max_top_k
        self._query_timeout = query_timeout

    @classmethod
    def from_settings(
        cls,
        job_store: IJobStore,
        vector_store: IVectorStoreProvider,
        embedding_provider: IEmbeddingProvider,
        legacy_retriever: LegacyFallbackRetriever,
        settings: Settings,
    ) -> RetrievalService:
        return cls(
            job_store=job_store,
            vector_store=vector_store,
            embedding_provider=embedding_provider,
            legacy_retriever=legacy_retriever,
            default_top_k=settings.retrieval_default_top_k,
            max_top_k=settings.retrieval_max_top_k,
            query_timeout=settings.query_embedding_timeout_seconds,
        )

    async def retrieve(
        self,
        query: str,
        job_ids: list[str] | None = None,
        owner_id: str | None = None,
        top_k: int | None = None,
        similarity_floor: float | None = None,
    ) -> RetrievalResult:
        """Return the top-*top_k* chunks for *query*.

        Parameters
        ----------
        query:
            Natural-language query.
        job_ids:
            Candidate jobs; empty or ``None`` means every job of *owner_id*
            (or every job when no owner is given).
        owner_id:
            Restricts candidates to this owner's jobs.
        top_k:
            Number of results (default from settings, capped).
        similarity_floor:
            Minimum similarity for vector hits.

        Returns
        -------
        RetrievalResult
            Ranked results plus the search mode used for every candidate.
        """
        k = min(max(1, top_k or self._default_top_k), self._max_top_k)
        jobs = await self._resolve_candidates(job_ids, owner_id)
        if not jobs:
            logger.info("retrieval_no_candidates", owner_id=owner_id, requested=len(job_ids or []))
            return RetrievalResult(no_queryable_documents=True)

        by_id = {job.id: job for job in jobs}
        candidate_ids = list(by_id)

        vector_ids: list[str] = []
        vector_hits: list[ScoredChunk] = []
        try:
            counts = await with_deadline(
                lambda: self._vectors.count_by_job(candidate_ids),
                timeout=self._query_timeout,
                operation="vector_count",
                provider_name=self._vectors.get_provider_name(),
            )
            vector_ids = [jid for jid in candidate_ids if counts.get(jid, 0) > 0]
            if vector_ids:
                vector_hits = await self._vector_search(query, vector_ids, k)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "vector_search_unavailable",
                error=str(exc),
                candidates=len(candidate_ids),
                fallback="legacy",
            )
            vector_ids = []
            vector_hits = []

        vector_set = set(vector_ids)
        legacy_ids = [jid for jid in candidate_ids if jid not in vector_set]
        contents = await self._jobs.get_extracted_contents(legacy_ids) if legacy_ids else {}

        search_modes: dict[str, SearchMode] = {}
        results: list[RetrievedChunk] = []

        for jid in vector_ids:
            search_modes[jid] = SearchMode.VECTOR
        for hit in vector_hits:
            job = by_id.get(hit.chunk.job_id)
            if job is None:
                continue
            if similarity_floor is not None and hit.similarity < similarity_floor:
                continue
            results.append(
                RetrievedChunk(
                    job_id=job.id,
                    chunk_index=hit.chunk.chunk_index,
                    chunk_text=hit.chunk.text,
                    similarity_score=hit.similarity,
                    search_mode=SearchMode.VECTOR,
                    file_name=job.file_name,
                    context_ref=context_ref_for(job.id, hit.chunk.chunk_index),
                )
            )

        for jid in legacy_ids:
            content = contents.get(jid)
            legacy_hits = self._legacy.search(query, content) if content is not None else []
            # Empty extracted text leaves nothing to query.
            if not legacy_hits:
                continue
            search_modes[jid] = SearchMode.LEGACY
            for legacy_hit in legacy_hits:
                results.append(
                    RetrievedChunk(
                        job_id=jid,
                        chunk_index=legacy_hit.chunk.index,
                        chunk_text=legacy_hit.chunk.text,
                        similarity_score=legacy_hit.score,
                        search_mode=SearchMode.LEGACY,
                        file_name=by_id[jid].file_name,
                        context_ref=context_ref_for(jid, legacy_hit.chunk.index),
                    )
                )

        if not search_modes:
            logger.info("retrieval_no_queryable_content", candidates=len(candidate_ids))
            return RetrievalResult(no_queryable_documents=True)

        results.sort(key=_rank_key)
        ranked = results[:k]
        logger.info(
            "retrieval_complete",
            candidates=len(candidate_ids),
            vector_jobs=len(vector_ids),
            legacy_jobs=sum(1 for mode in search_modes.values() if mode is SearchMode.LEGACY),
            results=len(ranked),
            top_score=ranked[0].similarity_score if ranked else 0.0,
        )
        return RetrievalResult(results=ranked, search_modes=search_modes)

    async def _vector_search(self, query: str, job_ids: list[str], k: int) -> list[ScoredChunk]:
        query_vector = await with_deadline(
            lambda: self._embedder.embed_single(query),
            timeout=self._query_timeout,
            operation="query_embedding",
            provider_name=self._embedder.get_provider_name(),
        )
        return await with_deadline(
            lambda: self._vectors.query(query_vector, job_ids, k),
            timeout=self._query_timeout,
            operation="vector_query",
            provider_name=self._vectors.get_provider_name(),
        )

    async def _resolve_candidates(
        self, job_ids: list[str] | None, owner_id: str | None
    ) -> list[ProcessingJob]:
        if job_ids:
            jobs = await self._jobs.get_jobs(job_ids)
            if owner_id is not None:
                jobs = [job for job in jobs if job.owner_id == owner_id]
        else:
            jobs = await self._jobs.list_jobs(owner_id=owner_id, stages=set(QUERYABLE_STAGES))
        return [job for job in jobs if job.is_queryable_stage]
