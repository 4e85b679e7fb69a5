"""Custom exception hierarchy for the avatar knowledge pipeline.

All application exceptions inherit from :class:`KnowledgeBaseError`, which
carries an optional ``provider_name`` so error handlers can identify which
component or external service (e.g. "openai_embedding", "sqlite_knowledge")
caused the failure, and a class-level ``kind`` string that is the only
piece of an error ever shown to callers outside the process.

The hierarchy is organized by pipeline stage:

    KnowledgeBaseError  (base -- catch-all for any pipeline error)
    +-- UnsupportedTypeError    (upload validation: mime type)
    +-- OversizeInputError      (upload validation: size ceiling)
    +-- ExtractionFailedError   (text extraction from PDF/DOCX/TXT)
    +-- NoContentError          (document produced zero chunks)
    +-- EmbeddingFailedError    (embedding API call failed)
    +-- DimensionMismatchError  (vectors of different lengths compared)
    +-- EmptyQueryError         (blank search query)
    +-- NotFoundError           (unknown job or document id)
    +-- InvalidTransitionError  (job state machine violation)
    +-- StorageError            (knowledge / job store failure)
    +-- ConfigurationError      (startup / missing config)

Ingestion failures are recorded on the job by ``kind``; the human-readable
``message`` may contain internal detail and is only ever logged.
"""


class KnowledgeBaseError(Exception):
    """Base exception for all knowledge pipeline errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which component triggered the error.
    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[openai_embedding] API error``.
    """

    kind: str = "InternalError"

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
# Upload validation errors
# ---------------------------------------------------------------------------

class UnsupportedTypeError(KnowledgeBaseError):
    """Raised when an upload's mime type is not PDF, plain text, or DOCX."""

    kind = "UnsupportedType"

    def __init__(
        self,
        message: str = "Unsupported document type",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class OversizeInputError(KnowledgeBaseError):
    """Raised when an upload exceeds the configured byte ceiling."""

    kind = "OversizeInput"

    def __init__(
        self,
        message: str = "Document exceeds the maximum upload size",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Extraction / chunking errors
# ---------------------------------------------------------------------------

class ExtractionFailedError(KnowledgeBaseError):
    """Raised when a supported document cannot be parsed (corrupt PDF, bad zip)."""

    kind = "ExtractionFailed"

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NoContentError(KnowledgeBaseError):
    """Raised when extracted text yields zero chunks."""

    kind = "NoContent"

    def __init__(
        self,
        message: str = "Document contains no extractable text",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding / similarity errors
# ---------------------------------------------------------------------------

class EmbeddingFailedError(KnowledgeBaseError):
    """Raised when the embedding model fails for any text in a request.

    Embedding is all-or-nothing: callers never receive a partial vector list.
    """

    kind = "EmbeddingFailed"

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(KnowledgeBaseError):
    """Raised when vectors of different dimensionality are compared."""

    kind = "DimensionMismatch"

    def __init__(
        self,
        message: str = "Vector dimensions do not match",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Retrieval / lookup errors
# ---------------------------------------------------------------------------

class EmptyQueryError(KnowledgeBaseError):
    """Raised when a search query is empty or whitespace only."""

    kind = "EmptyQuery"

    def __init__(
        self,
        message: str = "Search query must not be empty",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(KnowledgeBaseError):
    """Raised when a job id or document id is unknown."""

    kind = "NotFound"

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / persistence / configuration errors
# ---------------------------------------------------------------------------

class InvalidTransitionError(KnowledgeBaseError):
    """Raised when a job is moved to a state its current state cannot reach."""

    kind = "InvalidTransition"

    def __init__(
        self,
        message: str = "Invalid job state transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageError(KnowledgeBaseError):
    """Raised when the knowledge store or job store cannot complete a write."""

    kind = "StorageFailed"

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeBaseError):
    """Raised when configuration is invalid or missing at startup."""

    kind = "Configuration"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
