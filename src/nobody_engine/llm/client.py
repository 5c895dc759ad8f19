"""HTTP request client for OpenAI-compatible text-generation backends.

``LLMClient`` is the only place in the pipeline that makes a network call.
One instance is built per validated :class:`~nobody_engine.llm.config.LLMConfig`
and shared by every caller (NPC decisions, plot generation, script
parsing), possibly from several threads at once.

Call flow (``execute``)
-----------------------
1. Validate the request and compute effective ``max_tokens`` (clamped to
   the config ceiling) and ``temperature``.  Invalid requests raise
   :class:`InvalidRequestError` before cache or network are touched.
2. Fingerprint ``(endpoint, model, prompt, max_tokens, temperature bits)``
   with SHA-256.  The temperature is hashed by its exact IEEE-754 bit
   pattern so that distinguishable floats never share a cache slot.
3. Return a cache hit unchanged.
4. On a miss, POST a single non-streaming user turn.  Timeouts, transport
   failures and 429/5xx statuses are retried up to ``max_retries`` extra
   times, sleeping ``attempt * retry_backoff_ms`` before each retry.
   Anything else fails immediately.
5. Parse the body into an :class:`LLMResponse`, insert it into the cache
   and return it.

Sync HTTP
---------
The client uses the synchronous ``requests`` library.  The cache lock is
only held inside :class:`~nobody_engine.llm.cache.ResponseCache` calls, never
across ``requests.post`` or the backoff sleep, so concurrent callers only
serialise on short dict operations.
"""

from __future__ import annotations

import hashlib
import json
import logging
import struct
import time
from collections.abc import Callable
from typing import Any

import requests

from nobody_engine.llm.cache import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL_SECONDS,
    ResponseCache,
)
from nobody_engine.llm.config import LLMConfig, temperature_in_range
from nobody_engine.llm.errors import (
    InvalidRequestError,
    InvalidResponseError,
    LLMApiError,
    LLMHttpError,
    LLMServiceError,
    LLMTimeoutError,
)
from nobody_engine.llm.models import LLMRequest, LLMResponse
from nobody_engine.llm.tokens import estimate_token_count

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BACKOFF_MS = 200

# A prompt may cost at most this many times the completion ceiling.  Guards
# against pathological inputs rather than modelling any real context window.
PROMPT_TOKEN_MULTIPLIER = 64

_BODY_READ_PLACEHOLDER = "failed to read error response body"


# ── Failure classification ───────────────────────────────────────────────────


def is_retryable_status(status: int) -> bool:
    """Return ``True`` for 429 and every 5xx status."""
    return status == 429 or 500 <= status <= 599


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` if ``exc`` is worth another attempt.

    Timeouts and transport failures are always retryable; API errors only
    when their status is.  Config, request and response-shape errors never
    are.
    """
    if isinstance(exc, (LLMTimeoutError, LLMHttpError)):
        return True
    if isinstance(exc, LLMApiError):
        return is_retryable_status(exc.status_code)
    return False


# ── Response-shape extraction ────────────────────────────────────────────────
#
# Each strategy returns the raw text for one accepted upstream shape, or
# None when the payload does not have that shape.  The first strategy that
# returns a string wins.


def _first_choice(payload: dict[str, Any]) -> dict[str, Any] | None:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def _chat_message_content(payload: dict[str, Any]) -> str | None:
    """``choices[0].message.content`` (chat completions)."""
    choice = _first_choice(payload)
    if choice is None:
        return None
    message = choice.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def _completion_text(payload: dict[str, Any]) -> str | None:
    """``choices[0].text`` (legacy completions)."""
    choice = _first_choice(payload)
    if choice is None:
        return None
    text = choice.get("text")
    return text if isinstance(text, str) else None


def _flat_output_text(payload: dict[str, Any]) -> str | None:
    """Top-level ``output_text`` (responses-style APIs)."""
    text = payload.get("output_text")
    return text if isinstance(text, str) else None


_TEXT_EXTRACTORS: tuple[Callable[[dict[str, Any]], str | None], ...] = (
    _chat_message_content,
    _completion_text,
    _flat_output_text,
)

# Upper bound for reported token counts; larger values are treated as absent.
_MAX_TOKEN_COUNT = 2**32 - 1


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _optional_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < 0 or value > _MAX_TOKEN_COUNT:
        return None
    return value


class LLMClient:
    """Cache-fronted, retrying client for one backend configuration.

    Attributes:
        _config:           Validated, frozen backend configuration.
        _timeout:          Per-call HTTP timeout in seconds.
        _max_retries:      Extra attempts after the first for retryable
                           failures.
        _retry_backoff_ms: Linear backoff unit; retry *n* sleeps
                           ``n * _retry_backoff_ms`` milliseconds.
        _cache:            Shared response cache.
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
        cache: ResponseCache | None = None,
    ) -> None:
        """Validate ``config`` and build the client.

        Args:
            config:           Backend configuration.  Validated here, once.
            timeout_seconds:  Hard per-call network timeout.
            max_retries:      Retries after the first attempt (0 disables).
            retry_backoff_ms: Backoff unit in milliseconds.
            cache:            Cache to use; a default-sized one is created
                              when omitted.

        Raises:
            InvalidConfigError: If ``config`` fails validation.
        """
        config.validate()

        self._config = config
        self._timeout = timeout_seconds
        self._max_retries = max(max_retries, 0)
        self._retry_backoff_ms = retry_backoff_ms
        self._cache = (
            cache
            if cache is not None
            else ResponseCache(DEFAULT_CACHE_MAX_ENTRIES, DEFAULT_CACHE_TTL_SECONDS)
        )

        logger.info(
            "LLMClient initialised (endpoint=%s, model=%s, max_tokens=%d, timeout=%.1fs)",
            config.endpoint,
            config.model,
            config.max_tokens,
            timeout_seconds,
        )

    @property
    def config(self) -> LLMConfig:
        return self._config

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    # ── Primary entry point ───────────────────────────────────────────────────

    def execute(self, request: LLMRequest) -> LLMResponse:
        """Return the backend's response to ``request``, from cache if possible.

        Args:
            request: Prompt plus optional per-call overrides.

        Returns:
            Normalised response with non-empty ``text``.

        Raises:
            InvalidRequestError:  Request failed validation (no I/O done).
            LLMTimeoutError:      Timed out on the final attempt.
            LLMHttpError:         Transport failure on the final attempt.
            LLMApiError:          Non-success status, not retryable or
                                  retries exhausted.
            InvalidResponseError: Body had no recognisable text.
        """
        max_tokens, temperature = self._effective_parameters(request)

        request_hash = self.fingerprint(request.prompt, max_tokens, temperature)
        cached = self._cache.get(request_hash)
        if cached is not None:
            logger.debug("LLMClient: cache HIT for key %s", request_hash[:16])
            return cached

        logger.debug("LLMClient: cache MISS for key %s", request_hash[:16])
        payload = self._build_payload(request.prompt, max_tokens, temperature)
        response = self._send_with_retries(payload)

        self._cache.insert(request_hash, response)
        return response

    # ── Cache access ──────────────────────────────────────────────────────────

    def fingerprint(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Deterministic cache key for a call with effective parameters."""
        temperature_bits = struct.pack(">d", float(temperature)).hex()
        raw = json.dumps(
            [self._config.endpoint, self._config.model, prompt, max_tokens, temperature_bits],
            ensure_ascii=False,
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def cache_response(self, request_hash: str, response: LLMResponse) -> None:
        self._cache.insert(request_hash, response)

    def get_cached_response(self, request_hash: str) -> LLMResponse | None:
        return self._cache.get(request_hash)

    def cache_response_for_request(self, request: LLMRequest, response: LLMResponse) -> None:
        """Seed the cache so that ``execute(request)`` returns ``response``.

        Uses the same effective-parameter fingerprint as :meth:`execute`.

        Raises:
            InvalidRequestError: If ``request`` would be rejected by
                                 :meth:`execute`.
        """
        max_tokens, temperature = self._effective_parameters(request)
        self.cache_response(self.fingerprint(request.prompt, max_tokens, temperature), response)

    # ── Response parsing ──────────────────────────────────────────────────────

    @staticmethod
    def parse_response(payload: Any) -> LLMResponse:
        """Normalise a decoded JSON body into an :class:`LLMResponse`.

        Raises:
            InvalidResponseError: If no accepted shape yields a string, or
                                  the first one found is blank.
        """
        if not isinstance(payload, dict):
            raise InvalidResponseError("response body is not a JSON object")

        extracted = (extract(payload) for extract in _TEXT_EXTRACTORS)
        raw_text = next((text for text in extracted if text is not None), None)
        if raw_text is None or not raw_text.strip():
            raise InvalidResponseError("unable to locate text content")

        choice = _first_choice(payload) or {}
        usage = payload.get("usage")
        if not isinstance(usage, dict):
            usage = {}

        return LLMResponse(
            text=raw_text.strip(),
            model=_optional_str(payload.get("model")),
            finish_reason=_optional_str(choice.get("finish_reason")),
            prompt_tokens=_optional_count(usage.get("prompt_tokens")),
            completion_tokens=_optional_count(usage.get("completion_tokens")),
            total_tokens=_optional_count(usage.get("total_tokens")),
        )

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _effective_parameters(self, request: LLMRequest) -> tuple[int, float]:
        """Validate ``request`` and return ``(max_tokens, temperature)``."""
        if not request.prompt or not request.prompt.strip():
            raise InvalidRequestError("prompt must not be empty")

        requested = (
            request.max_tokens if request.max_tokens is not None else self._config.max_tokens
        )
        max_tokens = min(requested, self._config.max_tokens)
        if max_tokens <= 0:
            raise InvalidRequestError("max_tokens must be greater than 0")

        temperature = (
            request.temperature if request.temperature is not None else self._config.temperature
        )
        if not temperature_in_range(temperature):
            raise InvalidRequestError("temperature must be in range [0.0, 2.0]")

        estimated = estimate_token_count(request.prompt)
        prompt_limit = max_tokens * PROMPT_TOKEN_MULTIPLIER
        if estimated > prompt_limit:
            raise InvalidRequestError(
                f"estimated prompt tokens {estimated} exceeds prompt limit {prompt_limit}"
            )

        return max_tokens, temperature

    def _build_payload(self, prompt: str, max_tokens: int, temperature: float) -> dict:
        """Construct the chat-completions request body.

        ``stream`` is always ``False``: the pipeline only consumes complete
        responses.
        """
        return {
            "model": self._config.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }

    def _send_with_retries(self, payload: dict) -> LLMResponse:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._send_once(payload)
            except LLMServiceError as exc:
                if attempt > self._max_retries or not is_retryable_error(exc):
                    raise
                backoff_seconds = attempt * self._retry_backoff_ms / 1000.0
                logger.warning(
                    "LLMClient: attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    self._max_retries + 1,
                    exc,
                    backoff_seconds,
                )
                time.sleep(backoff_seconds)

    def _send_once(self, payload: dict) -> LLMResponse:
        """Perform one HTTP round-trip and parse the result."""
        try:
            response = requests.post(
                self._config.endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise LLMTimeoutError(self._timeout) from exc
        except requests.exceptions.RequestException as exc:
            raise LLMHttpError(str(exc)) from exc

        if not 200 <= response.status_code < 300:
            raise LLMApiError(response.status_code, _read_body(response))

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError(f"response body is not valid JSON: {exc}") from exc

        return self.parse_response(data)


def _read_body(response: requests.Response) -> str:
    try:
        return response.text
    except (requests.exceptions.RequestException, ValueError):
        logger.warning("LLMClient: could not read error body (status=%d)", response.status_code)
        return _BODY_READ_PLACEHOLDER
