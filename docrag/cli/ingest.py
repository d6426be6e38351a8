"""Standalone CLI for ingesting local files and querying the index.

Usage::

    python -m docrag.cli ingest ./reports/q3.pdf --owner alice

    python -m docrag.cli status 3f1c0e9a-...

    python -m docrag.cli query "quarterly revenue" --job-id 3f1c0e9a-... --top-k 3

``ingest`` runs the same register -> upload -> confirm -> process sequence
as the HTTP API, in-process and synchronously.  Settings come from the
environment and ``.env`` exactly as for the server.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from typing import Any

from docrag.config.settings import Settings
from docrag.main import build_components
from docrag.models.job import AnalysisTarget, IngestionOutcome
from docrag.utils.errors import DocRAGError
from docrag.utils.logging import configure_logging

_DEFAULT_OWNER = "cli"


async def _init(app_settings: Settings) -> dict[str, Any]:
    components = build_components(app_settings)
    await components["job_store"].initialize()
    return components


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    data = path.read_bytes()
    file_type = args.type or mimetypes.guess_type(path.name)[0] or path.suffix.lstrip(".")
    components = await _init(app_settings)
    service = components["ingestion_service"]

    print(f"Ingesting: {path.name} ({file_type}, {len(data)} bytes)")
    job, target = await service.register_upload(
        file_name=path.name,
        file_type=file_type,
        file_size=len(data),
        owner_id=args.owner,
        analysis_target=args.target,
    )
    await service.store_upload(job.id, data, target.upload_token)
    result = await service.process_job(job.id)

    print("\nIngestion complete:")
    print(f"  Job ID:          {result.job_id}")
    print(f"  Stage:           {result.stage.value}")
    print(f"  Outcome:         {result.outcome.value}")
    print(f"  Chunks:          {result.chunks_embedded}/{result.chunks_total} embedded")
    if result.chunks_write_failed:
        print(f"  Write failures:  {result.chunks_write_failed}")
    if result.failure_reason:
        print(f"  Failure reason:  {result.failure_reason}")
    print(f"  Time:            {result.elapsed_seconds:.2f}s")
    return 1 if result.outcome is IngestionOutcome.FAILED else 0


async def _handle_status(args: argparse.Namespace, app_settings: Settings) -> int:
    components = await _init(app_settings)
    job = await components["ingestion_service"].get_status(args.job_id)

    print(f"Job {job.id}")
    print(f"  File:     {job.file_name} ({job.file_type}, {job.file_size} bytes)")
    print(f"  Owner:    {job.owner_id}")
    print(f"  Stage:    {job.stage.value}")
    print(f"  Status:   {job.status.value}")
    print(f"  Outcome:  {job.outcome.value}")
    meta = job.metadata
    if meta.chunks_total is not None:
        print(f"  Chunks:   {meta.chunks_embedded or 0}/{meta.chunks_total} embedded")
    if meta.failure_reason:
        print(f"  Failure:  {meta.failure_reason}")
    if meta.last_error:
        print(f"  Last err: {meta.last_error}")
    return 0


async def _handle_query(args: argparse.Namespace, app_settings: Settings) -> int:
    components = await _init(app_settings)
    result = await components["retrieval_service"].retrieve(
        query=args.text,
        job_ids=args.job_ids or None,
        owner_id=args.owner,
        top_k=args.top_k,
        similarity_floor=args.floor,
    )
    if result.no_queryable_documents:
        print("No queryable documents.")
        return 0

    print(f"{len(result.results)} result(s) for: {args.text!r}\n")
    for rank, chunk in enumerate(result.results, start=1):
        preview = " ".join(chunk.chunk_text.split())[:160]
        print(
            f"{rank:>2}. [{chunk.similarity_score:.3f} {chunk.search_mode.value}] "
            f"{chunk.file_name} {chunk.context_ref}"
        )
        print(f"    {preview}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the docrag CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m docrag.cli",
        description="Ingest local documents into docrag and query them.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a local file")
    ingest_parser.add_argument("file", help="Path to the file")
    ingest_parser.add_argument("--owner", default=_DEFAULT_OWNER, help="Owner id for the job")
    ingest_parser.add_argument(
        "--type", default=None, help="Declared MIME type or extension (default: guessed)"
    )
    ingest_parser.add_argument(
        "--target",
        default=None,
        choices=[t.value for t in AnalysisTarget],
        help="Analysis target (default: document-analysis)",
    )

    status_parser = subparsers.add_parser("status", help="Show a job's status")
    status_parser.add_argument("job_id", help="Job id")

    query_parser = subparsers.add_parser("query", help="Retrieve chunks for a query")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument(
        "--job-id", action="append", dest="job_ids", default=[], help="Restrict to a job (repeatable)"
    )
    query_parser.add_argument("--owner", default=None, help="Restrict to an owner's jobs")
    query_parser.add_argument("--top-k", type=int, default=None, dest="top_k", help="Number of results")
    query_parser.add_argument("--floor", type=float, default=None, help="Minimum vector similarity")

    return parser


_HANDLERS = {
    "ingest": _handle_ingest,
    "status": _handle_status,
    "query": _handle_query,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command, and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level, json_output=False)

    try:
        return asyncio.run(_HANDLERS[args.command](args, app_settings))
    except DocRAGError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
