"""Request and response value types for the LLM pipeline."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LLMRequest:
    """A single generation request.

    Attributes:
        prompt:      Prompt text, sent as one user turn.
        max_tokens:  Optional per-call ceiling; clamped to the config value.
        temperature: Optional per-call temperature; must stay in range.
    """

    prompt: str
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(frozen=True)
class LLMResponse:
    """Normalised backend response.

    ``text`` is always non-empty and trimmed when the response was produced
    by :meth:`LLMClient.parse_response`.  Token counts are ``None`` when the
    backend did not report usage.
    """

    text: str
    model: str | None = None
    finish_reason: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
