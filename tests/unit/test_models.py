"""Unit tests for the job and retrieval Pydantic models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from docrag.models.job import (
    IngestionOutcome,
    JobMetadata,
    JobStage,
    JobStatus,
    stage_rank,
)
from docrag.models.rag import RetrievedChunk, SearchMode, chunk_id_for, context_ref_for


class TestJobMetadata:
    def test_merge_accepts_both_key_styles(self) -> None:
        merged = JobMetadata().merged({"chunksTotal": 10, "chunks_embedded": 4})
        assert merged.chunks_total == 10
        assert merged.chunks_embedded == 4

    def test_merge_keeps_existing_values(self) -> None:
        base = JobMetadata(chunks_total=10, extraction_provider="local_extraction")
        merged = base.merged({"chunks_embedded": 10})
        assert merged.chunks_total == 10
        assert merged.extraction_provider == "local_extraction"

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JobMetadata().merged({"notAField": 1})

    def test_negative_counter_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JobMetadata(chunks_total=-1)

    def test_embedded_through_allows_minus_one(self) -> None:
        assert JobMetadata(embedded_through=-1).embedded_through == -1

    def test_public_form_is_camel_case_without_nulls(self) -> None:
        public = JobMetadata(chunks_total=3, fully_embedded=False).to_public()

        assert public["chunksTotal"] == 3
        assert public["fullyEmbedded"] is False
        assert "failureReason" not in public
        assert public["schemaVersion"] == 1

    def test_with_stage_does_not_duplicate(self) -> None:
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        meta = JobMetadata().with_stage(JobStage.UPLOADED, at).with_stage(JobStage.UPLOADED, at)

        assert [e.stage for e in meta.stage_history] == [JobStage.UPLOADED]
        assert meta.uploaded_at == at


class TestProcessingJob:
    def test_outcome(self, job_factory) -> None:
        assert job_factory(stage=JobStage.FAILED).outcome is IngestionOutcome.FAILED
        assert job_factory(stage=JobStage.PROCESSING).outcome is IngestionOutcome.PROCESSING
        assert job_factory(stage=JobStage.INDEXED).outcome is IngestionOutcome.COMPLETE
        partial = job_factory(
            stage=JobStage.EXTRACTED,
            status=JobStatus.COMPLETED,
            metadata={"fullyEmbedded": False},
        )
        assert partial.outcome is IngestionOutcome.PARTIAL

    def test_stage_flags(self, job_factory) -> None:
        assert job_factory(stage=JobStage.INJECTED).is_terminal
        assert not job_factory(stage=JobStage.INDEXED).is_terminal
        assert job_factory(stage=JobStage.EXTRACTED).is_queryable_stage
        assert not job_factory(stage=JobStage.UPLOADED).is_queryable_stage

    def test_jobs_are_frozen(self, job_factory) -> None:
        with pytest.raises(ValidationError):
            job_factory().stage = JobStage.UPLOADED

    def test_failed_ranks_after_every_stage(self) -> None:
        assert stage_rank(JobStage.FAILED) > stage_rank(JobStage.INJECTED)
        assert stage_rank(JobStage.REGISTERED) == 0


class TestRagModels:
    def test_identifiers(self) -> None:
        assert chunk_id_for("job-1", 0) == "job-1:0"
        assert context_ref_for("job-1", 0) == "ctx://job-1#chunk/1"

    def test_retrieved_chunk_serializes_camel_case(self) -> None:
        chunk = RetrievedChunk(
            job_id="job-1",
            chunk_index=2,
            chunk_text="text",
            similarity_score=0.5,
            search_mode=SearchMode.VECTOR,
            context_ref=context_ref_for("job-1", 2),
        )
        data = chunk.model_dump(by_alias=True, mode="json")

        assert data["jobId"] == "job-1"
        assert data["similarityScore"] == 0.5
        assert data["searchMode"] == "vector"

    def test_score_outside_unit_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetrievedChunk(
                job_id="j",
                chunk_index=0,
                chunk_text="t",
                similarity_score=1.5,
                search_mode=SearchMode.LEGACY,
                context_ref="ctx://j#chunk/1",
            )
