"""
Domain-specific exception hierarchy for nrrds.

All custom exceptions inherit from NrrdsException for consistent error handling.
"""

from typing import Any

from ..config import GENERATION_FAILED_MESSAGE


class NrrdsException(Exception):
    """
    Base exception for all nrrds errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# ============================================================================
# Request Validation
# ============================================================================

class ValidationError(NrrdsException):
    """A request field is missing or invalid. Never retried."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid '{field}': {reason}",
            context={"field": field}
        )
        self.field = field
        self.reason = reason


# ============================================================================
# LLM Exceptions
# ============================================================================

class LLMException(NrrdsException):
    """Base class for text-generation service errors."""
    pass


class LLMConnectionError(LLMException):
    """Cannot reach text-generation service."""

    def __init__(self, url: str, original_error: Exception):
        super().__init__(
            f"Cannot connect to LLM service at {url}",
            context={"url": url, "original": str(original_error)}
        )
        self.url = url
        self.original_error = original_error


class LLMTimeoutError(LLMException):
    """LLM request exceeded timeout."""

    def __init__(self, timeout_seconds: float, url: str):
        super().__init__(
            f"LLM request to {url} exceeded {timeout_seconds}s timeout",
            context={"timeout": timeout_seconds, "url": url}
        )
        self.timeout_seconds = timeout_seconds
        self.url = url


class LLMResponseError(LLMException):
    """Invalid or unparseable LLM response."""

    def __init__(self, status_code: int, response_text: str, url: str):
        # Truncate long responses
        truncated = response_text[:200] + "..." if len(response_text) > 200 else response_text
        super().__init__(
            f"LLM HTTP {status_code} from {url}: {truncated}",
            context={"status_code": status_code, "url": url}
        )
        self.status_code = status_code
        self.response_text = response_text


# ============================================================================
# Generation Exceptions
# ============================================================================

class GenerationError(NrrdsException):
    """
    A pipeline stage aborted comic generation.

    Attributes:
        stage: Which stage failed (script, analysis, format, format_fallback)
        public_message: Generic message safe to show to end users
    """

    public_message = GENERATION_FAILED_MESSAGE

    def __init__(self, stage: str, reason: str):
        super().__init__(
            f"Comic generation failed at stage '{stage}': {reason}",
            context={"stage": stage}
        )
        self.stage = stage
        self.reason = reason


class UpstreamServiceError(GenerationError):
    """Text-generation call failed or returned truncated/empty output."""
    pass


class FormatRepairableError(GenerationError):
    """Primary JSON formatting failed; the fallback formatter may recover."""

    def __init__(self, reason: str, raw_response: str | None = None):
        super().__init__("format", reason)
        self.raw_response = raw_response


class GenerationCancelledError(GenerationError):
    """Caller cancelled generation before or during a stage."""

    def __init__(self, stage: str):
        super().__init__(stage, "cancelled by caller")


# ============================================================================
# Storage Exceptions
# ============================================================================

class StorageException(NrrdsException):
    """Base class for key-value storage errors."""
    pass


class StorageDegradedError(StorageException):
    """Key-value operation failed; callers substitute a safe default."""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Storage {operation} failed: {reason}",
            context={"operation": operation}
        )
        self.operation = operation
        self.reason = reason


class PersistenceError(StorageException):
    """A finished comic could not be saved."""

    def __init__(self, comic_id: str, reason: str):
        super().__init__(
            f"Failed to persist comic {comic_id}: {reason}",
            context={"comic_id": comic_id}
        )
        self.comic_id = comic_id
