"""
Shared pytest fixtures for the nobody engine test suite.

This module provides fixtures that are automatically available to all test files:
- A valid LLMConfig and an LLMClient built from it
- A controllable clock for cache expiry tests
- A factory for mock ``requests.Response`` objects

No fixture performs network I/O.  Tests that exercise the HTTP path patch
``requests.post`` themselves so each test states exactly what the backend
returns.
"""

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from nobody_engine.llm.cache import ResponseCache
from nobody_engine.llm.client import LLMClient
from nobody_engine.llm.config import LLMConfig

ENDPOINT = "https://llm.example.test/v1/chat/completions"
API_KEY = "sk-test-key"
MODEL = "gpt-4o-mini"

# ============================================================================
# CONFIG / CLIENT FIXTURES
# ============================================================================


@pytest.fixture
def llm_config() -> LLMConfig:
    """A config that passes validation."""
    return LLMConfig(
        endpoint=ENDPOINT,
        api_key=API_KEY,
        model=MODEL,
        max_tokens=512,
        temperature=0.7,
    )


@pytest.fixture
def client(llm_config: LLMConfig) -> LLMClient:
    """Client with a fresh default-sized cache and a 5s timeout."""
    return LLMClient(llm_config, timeout_seconds=5.0, cache=ResponseCache())


# ============================================================================
# TIME FIXTURES
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# HTTP FIXTURES
# ============================================================================


def _make_http_response(
    status_code: int = 200,
    json_body: object = None,
    text: str = "",
) -> MagicMock:
    """Build a mock ``requests.Response``."""
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.text = text
    if isinstance(json_body, Exception):
        mock_resp.json.side_effect = json_body
    else:
        mock_resp.json.return_value = json_body
    return mock_resp


@pytest.fixture
def http_response() -> Callable[..., MagicMock]:
    """Factory fixture: ``http_response(status_code, json_body, text)``."""
    return _make_http_response


def _make_chat_body(content: str, **extra: object) -> dict:
    """Chat-completions JSON body carrying ``content``."""
    body: dict = {
        "model": MODEL,
        "choices": [
            {"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    body.update(extra)
    return body


@pytest.fixture
def chat_body() -> Callable[..., dict]:
    """Factory fixture: ``chat_body(content, **extra_top_level_keys)``."""
    return _make_chat_body
