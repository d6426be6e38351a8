"""Command-line tools for docrag.

- ``python -m docrag.cli ingest <file>`` -- register, upload and process a
  local file in-process.
- ``python -m docrag.cli status <job_id>`` -- print a job's stage, status
  and outcome.
- ``python -m docrag.cli query "<text>"`` -- run a retrieval query.
"""
