"""Unit tests for exception hierarchy."""

from nrrds.config import GENERATION_FAILED_MESSAGE
from nrrds.core.exceptions import (
    FormatRepairableError,
    GenerationCancelledError,
    GenerationError,
    LLMConnectionError,
    LLMException,
    LLMResponseError,
    LLMTimeoutError,
    NrrdsException,
    PersistenceError,
    StorageDegradedError,
    StorageException,
    UpstreamServiceError,
    ValidationError,
)
from nrrds.core.result import Result


def test_nrrds_exception_base():
    """Test base exception with context."""
    exc = NrrdsException("test error", context={"key": "value"})
    assert exc.message == "test error"
    assert exc.context == {"key": "value"}
    assert "key=value" in str(exc)


def test_nrrds_exception_without_context():
    exc = NrrdsException("plain")
    assert str(exc) == "plain"


def test_llm_connection_error():
    """Test LLM connection error creation."""
    original = ConnectionError("Network unreachable")
    exc = LLMConnectionError("http://localhost:11434/api/chat", original)

    assert exc.url == "http://localhost:11434/api/chat"
    assert exc.original_error is original
    assert "localhost:11434" in str(exc)


def test_llm_timeout_error():
    """Test LLM timeout error."""
    exc = LLMTimeoutError(30.0, "http://localhost:11434")

    assert exc.timeout_seconds == 30.0
    assert "30" in str(exc)


def test_llm_response_error_truncates_body():
    exc = LLMResponseError(502, "x" * 500, "http://llm")

    assert exc.status_code == 502
    assert exc.response_text == "x" * 500
    assert "..." in exc.message
    assert len(exc.message) < 300


def test_validation_error():
    exc = ValidationError("reaction_type", "unknown reaction type 'love'")

    assert exc.field == "reaction_type"
    assert "reaction_type" in str(exc)
    assert "love" in str(exc)


def test_generation_errors_carry_stage_and_public_message():
    """Every pipeline abort is tagged with its stage."""
    upstream = UpstreamServiceError("analysis", "empty response")
    repairable = FormatRepairableError("missing title", raw_response="{}")
    cancelled = GenerationCancelledError("script")

    assert upstream.stage == "analysis"
    assert repairable.stage == "format"
    assert repairable.raw_response == "{}"
    assert cancelled.stage == "script"
    for exc in (upstream, repairable, cancelled):
        assert exc.public_message == GENERATION_FAILED_MESSAGE
        assert "stage=" in str(exc)


def test_storage_errors():
    degraded = StorageDegradedError("hgetall", "connection refused")
    persistence = PersistenceError("bug-2025-03-14", "read-back verification failed")

    assert degraded.operation == "hgetall"
    assert "connection refused" in str(degraded)
    assert persistence.comic_id == "bug-2025-03-14"


def test_exception_inheritance():
    """Test exception hierarchy."""
    assert issubclass(ValidationError, NrrdsException)
    assert issubclass(LLMTimeoutError, LLMException)
    assert issubclass(LLMException, NrrdsException)
    assert issubclass(UpstreamServiceError, GenerationError)
    assert issubclass(FormatRepairableError, GenerationError)
    assert issubclass(GenerationCancelledError, GenerationError)
    assert issubclass(StorageDegradedError, StorageException)
    assert issubclass(PersistenceError, StorageException)


def test_result_success_and_degraded():
    ok = Result.success([1, 2])
    assert ok.ok
    assert ok.value == [1, 2]
    assert ok.error is None

    error = StorageDegradedError("get", "down")
    degraded = Result.degraded([], error)
    assert not degraded.ok
    assert degraded.value == []
    assert degraded.error is error
