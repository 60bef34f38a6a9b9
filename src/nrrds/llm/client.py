"""Text-generation client.

Every provider response is normalized into a CompletionResult at this
boundary, so the generation pipeline never branches on response shape.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx
from loguru import logger

from ..config import settings
from ..core.exceptions import LLMConnectionError, LLMResponseError, LLMTimeoutError
from ..core.resilience import AsyncCircuitBreaker, CircuitBreakerConfig


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    TRUNCATED = "truncated"    # Stopped by the output-length budget
    INCOMPLETE = "incomplete"  # Stopped for any other reason (filter, error)


@dataclass
class CompletionResult:
    """Normalized text-generation response."""
    text: str
    status: CompletionStatus
    usage: Dict[str, int] = field(default_factory=dict)
    reason: Optional[str] = None


class TextGenerator(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        creativity: float,
        max_output_tokens: int,
    ) -> CompletionResult:
        ...


def _status_from_reason(reason: Optional[str]) -> CompletionStatus:
    if reason in (None, "stop", "end_turn", "completed"):
        return CompletionStatus.COMPLETED
    if reason in ("length", "max_tokens", "max_output_tokens"):
        return CompletionStatus.TRUNCATED
    return CompletionStatus.INCOMPLETE


def _object(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object for {what}, got {type(value).__name__}")
    return value


def _content(message: Any) -> str:
    content = _object(message or {}, "message").get("content")
    return content if isinstance(content, str) else ""


def parse_openai_response(data: Any) -> CompletionResult:
    """Normalize an OpenAI-compatible ``/chat/completions`` body.

    Raises:
        ValueError: If the body, a choice or its message is not a JSON object
    """
    data = _object(data, "response body")
    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise ValueError(f"expected a list of choices, got {type(choices).__name__}")
    if not choices:
        return CompletionResult(text="", status=CompletionStatus.INCOMPLETE, reason="no_choices")
    choice = _object(choices[0], "choice")
    reason = choice.get("finish_reason")
    usage = data.get("usage")
    if not isinstance(usage, dict):
        usage = {}
    return CompletionResult(
        text=_content(choice.get("message")),
        status=_status_from_reason(reason),
        usage={
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
            "total_tokens": usage.get("total_tokens", 0),
        },
        reason=reason,
    )


def parse_ollama_response(data: Any) -> CompletionResult:
    """Normalize an Ollama ``/api/chat`` body (non-streaming).

    Raises:
        ValueError: If the body or its message is not a JSON object
    """
    data = _object(data, "response body")
    reason = data.get("done_reason")
    if reason is None and not data.get("done", True):
        reason = "not_done"
    input_tokens = data.get("prompt_eval_count", 0)
    output_tokens = data.get("eval_count", 0)
    return CompletionResult(
        text=_content(data.get("message")),
        status=_status_from_reason(reason),
        usage={
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
        reason=reason,
    )


class TextGenerationClient:
    """HTTP client for an OpenAI-compatible server or Ollama."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        provider: str | None = None,
        timeout: float | None = None,
        breaker: AsyncCircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize text-generation client.

        Args:
            base_url: Server URL (defaults to settings.LLM_BASE_URL)
            api_key: Bearer token for OpenAI-compatible servers
            provider: "openai" or "ollama"
            timeout: Request timeout in seconds
            breaker: Circuit breaker shared across calls
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.provider = provider or settings.LLM_PROVIDER
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.breaker = breaker or AsyncCircuitBreaker(CircuitBreakerConfig(
            failure_threshold=settings.LLM_FAILURE_THRESHOLD,
            recovery_timeout=settings.LLM_RECOVERY_TIMEOUT,
            name="llm",
        ))
        self._transport = transport

        if self.provider not in ("openai", "ollama"):
            raise ValueError(f"Unsupported LLM provider: {self.provider}")

    @property
    def endpoint(self) -> str:
        if self.provider == "ollama":
            return f"{self.base_url}/api/chat"
        return f"{self.base_url}/chat/completions"

    def _payload(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        creativity: float,
        max_output_tokens: int,
    ) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if self.provider == "ollama":
            return {
                "model": model,
                "messages": messages,
                "stream": False,
                "options": {
                    "temperature": creativity,
                    "num_predict": max_output_tokens,
                },
            }
        return {
            "model": model,
            "messages": messages,
            "temperature": creativity,
            "max_tokens": max_output_tokens,
        }

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        creativity: float,
        max_output_tokens: int,
    ) -> CompletionResult:
        """Run one completion.

        Raises:
            LLMConnectionError, LLMTimeoutError, LLMResponseError: transport failures
            CircuitBreakerOpen: If recent calls kept failing
        """
        payload = self._payload(system_prompt, user_prompt, model, creativity, max_output_tokens)
        data = await self.breaker.call(self._post, payload)
        try:
            if self.provider == "ollama":
                result = parse_ollama_response(data)
            else:
                result = parse_openai_response(data)
        except ValueError as e:
            logger.error(f"LLM returned an unexpected body: {e}")
            raise LLMResponseError(200, str(e), self.endpoint) from e
        logger.debug(
            f"LLM {model} finished: status={result.status.value} "
            f"reason={result.reason} usage={result.usage}"
        )
        return result

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"LLM request timed out: {e}")
            raise LLMTimeoutError(self.timeout, self.endpoint) from e
        except httpx.HTTPStatusError as e:
            logger.error(f"LLM API call failed: {e}")
            raise LLMResponseError(e.response.status_code, e.response.text, self.endpoint) from e
        except httpx.RequestError as e:
            logger.error(f"LLM API call failed: {e}")
            raise LLMConnectionError(self.endpoint, e) from e
        except ValueError as e:
            logger.error(f"LLM returned a non-JSON body: {e}")
            raise LLMResponseError(200, str(e), self.endpoint) from e
