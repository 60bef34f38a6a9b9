"""Pytest configuration and shared fixtures."""

import json
import random
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from nrrds.core.exceptions import StorageDegradedError
from nrrds.llm.client import CompletionResult, CompletionStatus
from nrrds.storage.kv import KeyValueStore

FIXED_NOW = datetime(2025, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


# ============================================================================
# Clocks and randomness
# ============================================================================

class FakeClock:
    """Settable wall clock for both datetime and epoch-seconds consumers."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    """Seeded random source for reproducible draws."""
    return random.Random(1234)


# ============================================================================
# Storage
# ============================================================================

class BrokenStore(KeyValueStore):
    """Store whose backend fails on every command."""

    def __init__(self):
        super().__init__(url="redis://unreachable:6379/0")
        self.redis = MagicMock()
        self._connected = True

    async def _call(self, operation, fn, *args):
        raise StorageDegradedError(operation, "connection refused")


@pytest.fixture
def store(clock):
    """In-memory store (Redis is never contacted)."""
    return KeyValueStore(url="redis://unused:6379/0", clock=clock.epoch)


@pytest.fixture
def broken_store():
    return BrokenStore()


# ============================================================================
# Text generation
# ============================================================================

class FakeLLM:
    """Scripted text-generation client.

    Each queued item is a CompletionResult to return or an exception to raise;
    every call is recorded for assertions.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, system_prompt, user_prompt, *, model, creativity, max_output_tokens):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "model": model,
            "creativity": creativity,
            "max_output_tokens": max_output_tokens,
        })
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def completed(text: str) -> CompletionResult:
    return CompletionResult(text=text, status=CompletionStatus.COMPLETED, usage={"total_tokens": 10}, reason="stop")


def truncated(text: str = "Panel 1: Once upon a") -> CompletionResult:
    return CompletionResult(text=text, status=CompletionStatus.TRUNCATED, reason="length")


SCRIPT_TEXT = """Monday morning, the office kitchen
Characters: Dana (😴), Raj (🤓)
Dana: "The coffee machine has a bug."
Raj thinks: "Time to debug it."
"""

ANALYSIS_TEXT = """Panel 1:
- Characters: Dana (😴), Raj (🤓)
- Dialogue assignments: Dana says the first line, Raj thinks the second
"""

COMIC_JSON = {
    "title": "The Bug That Wouldn't Die",
    "panels": [
        {
            "header": "Monday morning, the office kitchen",
            "characters": [
                {"name": "Raj", "emoji": "🤓", "style": 4, "effect": None},
                {"name": "Dana", "emoji": "😴", "style": 2, "effect": "shake"},
            ],
            "dialogue": [
                {"text": "The coffee machine has a bug.", "speaker": "Dana", "type": "speech", "style": "normal"},
                {"text": "Time to debug it.", "speaker": "Raj", "type": "thought", "style": "normal"},
            ],
        },
        {
            "header": "Ten minutes later",
            "characters": [{"name": "Dana", "emoji": "😴", "style": 5, "effect": None}],
            "dialogue": [{"text": "I can't believe it's still broken", "speaker": "Dana", "type": "speech"}],
        },
        {
            "header": "Lunch",
            "characters": [{"name": "Raj", "emoji": "🤓", "style": 1, "effect": "bounce"}],
            "dialogue": [{"text": "It was the server all along!", "speaker": "Raj", "type": "speech"}],
        },
    ],
}


@pytest.fixture
def comic_json():
    return json.loads(json.dumps(COMIC_JSON))


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def happy_llm(comic_json):
    """Client scripted for one clean three-stage run."""
    return FakeLLM([
        completed(SCRIPT_TEXT),
        completed(ANALYSIS_TEXT),
        completed("```json\n" + json.dumps(comic_json) + "\n```"),
    ])
