"""Custom exception hierarchy for docrag.

All application exceptions inherit from :class:`DocRAGError`, which carries
an optional ``provider_name`` so error handlers can identify which
collaborator (e.g. "openai", "chromadb", "local_extraction") caused the
failure.

The hierarchy is organized by pipeline domain:

    DocRAGError  (base -- catch-all for any docrag error)
    +-- ExtractionError              (text extraction from a stored file)
    |   +-- UnsupportedFormatError   (permanent: format cannot be read)
    |   +-- TransientExtractionError (retryable: backend hiccup)
    +-- EmbeddingError               (embedding-model call failed)
    |   +-- RateLimitError           (provider rate-limit exceeded)
    +-- VectorStoreError             (vector index read/write failure)
    +-- StorageError                 (object store or job store failure)
    |   +-- UploadNotFoundError      (raw bytes never reached the store)
    +-- JobNotFoundError             (unknown job id)
    +-- InvalidStageTransitionError  (backward or out-of-terminal move)
    +-- InvalidUploadError           (rejected registration or upload body)
    |   +-- UploadTokenError         (missing, forged or expired token)
    +-- DeadlineExceededError        (an external call ran past its budget)
    +-- ConfigurationError           (startup / invalid config)
    +-- ProviderUnavailableError     (external service down / unreachable)

The pipeline catches these at phase boundaries and writes them into job
metadata; the HTTP layer maps them onto status codes.
"""


class DocRAGError(Exception):
    """Base exception for all docrag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets
    for log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Extraction errors
# ---------------------------------------------------------------------------

class ExtractionError(DocRAGError):
    """Raised when text extraction from a stored file fails."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormatError(ExtractionError):
    """Raised when the extraction backend cannot read the declared format.

    Permanent: retrying the same file will not help.
    """

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class TransientExtractionError(ExtractionError):
    """Raised when extraction failed for a reason that may clear on retry."""

    def __init__(
        self,
        message: str = "Transient extraction failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding / vector-store errors
# ---------------------------------------------------------------------------

class EmbeddingError(DocRAGError):
    """Raised when an embedding-model call fails for a whole batch."""

    def __init__(
        self,
        message: str = "Embedding call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(EmbeddingError):
    """Raised when an API rate limit is exceeded.

    The batch processor treats this as transient and allows one retry.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(DocRAGError):
    """Raised when a vector-store read or write fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage / job errors
# ---------------------------------------------------------------------------

class StorageError(DocRAGError):
    """Raised when the object store or the job store fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UploadNotFoundError(StorageError):
    """Raised when a job is triggered before its bytes reached the object store."""

    def __init__(
        self,
        message: str = "Uploaded file not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobNotFoundError(DocRAGError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: str, provider_name: str | None = None) -> None:
        self._job_id = job_id
        super().__init__(message=f"Job not found: {job_id}", provider_name=provider_name)

    @property
    def job_id(self) -> str:
        return self._job_id


class InvalidStageTransitionError(DocRAGError):
    """Raised when a stage change would move a job backward or out of ``failed``."""

    def __init__(
        self,
        message: str = "Invalid stage transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DeadlineExceededError(DocRAGError):
    """Raised by :func:`~docrag.utils.deadlines.with_deadline` on timeout."""

    def __init__(
        self,
        operation: str,
        timeout: float,
        provider_name: str | None = None,
    ) -> None:
        self._operation = operation
        self._timeout = timeout
        super().__init__(
            message=f"{operation} exceeded its {timeout:.1f}s deadline",
            provider_name=provider_name,
        )

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def timeout(self) -> float:
        return self._timeout


class InvalidUploadError(DocRAGError):
    """Raised when an upload registration or upload body is rejected."""

    def __init__(
        self,
        message: str = "Invalid upload",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UploadTokenError(InvalidUploadError):
    """Raised when an upload token is missing, forged or expired."""

    def __init__(
        self,
        message: str = "Invalid or expired upload token",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration / availability
# ---------------------------------------------------------------------------

class ConfigurationError(DocRAGError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(DocRAGError):
    """Raised when an external service or provider is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
