"""Narrative generation service.

``GenerationService`` is the single public entry-point the game's LLM
callers (NPC decision engine, option generator, plot and novel generators,
script parser) use.  It orchestrates :class:`PromptBuilder`,
:class:`LLMClient` and :class:`ResponseValidator`.

Caller contract
---------------
``generate()`` either returns a :class:`GenerationResult` whose response
passed validation, or raises:

- :class:`~nobody_engine.llm.errors.LLMServiceError` if the *initial*
  backend call fails (invalid request, timeout, API error, ...).
- :class:`~nobody_engine.llm.errors.ResponseValidationError` if neither the
  initial response, the retries, nor the fallback validate.

Falling back to a rule-based generator after an exception is the caller's
decision.  The service only substitutes a response when the caller passes
``fallback_text`` explicitly, and that fallback is validated too.

Validation retries
------------------
A retry re-renders the prompt through the builder with a correction note
added to the world rules.  The note quotes the previous validation error
and changes the fingerprint, so the retry is a real backend call rather
than a cache replay of the rejected answer.  The retry prompt honours the
same ``max_prompt_tokens`` budget as the initial one; under a budget so
tight that the final hard cut removes the note, a retry can repeat an
earlier prompt and be answered from the cache.

A backend failure during a retry consumes that attempt slot and is
logged; it does not abort the loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from nobody_engine.llm.cache import ResponseCache
from nobody_engine.llm.client import LLMClient
from nobody_engine.llm.errors import (
    InvalidConfigError,
    LLMServiceError,
    ResponseValidationError,
)
from nobody_engine.llm.models import LLMRequest, LLMResponse
from nobody_engine.llm.prompt_builder import (
    PromptBuilder,
    PromptConstraints,
    PromptContext,
    PromptTemplate,
)
from nobody_engine.llm.validator import ResponseValidator, ValidationConstraints

if TYPE_CHECKING:
    from nobody_engine.config import EngineConfig

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_RETRIED = "retried"
STATUS_FALLBACK = "fallback"


@dataclass
class GenerationResult:
    """Outcome of one ``GenerationService.generate`` call.

    Attributes:
        response: Validated response handed to the caller.
        status:   ``"success"`` (initial response valid), ``"retried"``
                  (a retry attempt validated) or ``"fallback"``.
        attempts: Retry attempts made before the result was settled.
        prompt:   The initial prompt as rendered by the builder.
    """

    response: LLMResponse
    status: str
    attempts: int
    prompt: str


def _with_correction(
    constraints: PromptConstraints, attempt: int, error: str
) -> PromptConstraints:
    note = (
        f"[Correction attempt {attempt}] The previous answer was rejected: {error}. "
        "Answer again and satisfy every output requirement exactly."
    )
    return replace(constraints, world_rules=[*constraints.world_rules, note])


class GenerationService:
    """Builds, executes and validates narrative generation requests.

    Attributes:
        _client:    Shared request client.
        _builder:   Prompt builder.
        _validator: Response validator.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        builder: PromptBuilder | None = None,
        validator: ResponseValidator | None = None,
    ) -> None:
        self._client = client
        self._builder = builder if builder is not None else PromptBuilder()
        self._validator = validator if validator is not None else ResponseValidator()

    @classmethod
    def from_config(cls, config: EngineConfig) -> GenerationService:
        """Wire a service from a loaded :class:`EngineConfig`.

        Raises:
            InvalidConfigError: If the LLM endpoint/key are not configured
                                or the resulting config is invalid.
        """
        llm_config = config.llm_config()
        if llm_config is None:
            raise InvalidConfigError("llm endpoint and api_key are not configured")

        client = LLMClient(
            llm_config,
            timeout_seconds=config.llm.timeout_seconds,
            max_retries=config.retry.max_retries,
            retry_backoff_ms=config.retry.backoff_ms,
            cache=ResponseCache(config.cache.max_entries, config.cache.ttl_seconds),
        )
        return cls(
            client,
            builder=PromptBuilder(config.prompt.max_history_items),
            validator=ResponseValidator(config.validation.max_attempts),
        )

    @property
    def client(self) -> LLMClient:
        return self._client

    # ── Public API ────────────────────────────────────────────────────────────

    def generate(
        self,
        template: PromptTemplate,
        context: PromptContext,
        prompt_constraints: PromptConstraints,
        validation: ValidationConstraints,
        *,
        max_prompt_tokens: int,
        max_tokens: int | None = None,
        temperature: float | None = None,
        fallback_text: str | None = None,
    ) -> GenerationResult:
        """Run the full pipeline for one narrative request.

        Args:
            template:           Template kind for the ``[Task]`` line.
            context:            Narrative facts.
            prompt_constraints: Rule lines and schema hint.
            validation:         What the response must satisfy.
            max_prompt_tokens:  Token budget for the rendered prompt.
            max_tokens:         Optional completion ceiling override.
            temperature:        Optional temperature override.
            fallback_text:      Known-good answer used when every attempt
                                fails validation.

        Returns:
            :class:`GenerationResult` with a validated response.

        Raises:
            LLMServiceError:         The initial backend call failed.
            ResponseValidationError: Nothing validated (see ``resolve``).
        """
        prompt = self._builder.render(template, context, prompt_constraints, max_prompt_tokens)
        initial = self._client.execute(
            LLMRequest(prompt=prompt, max_tokens=max_tokens, temperature=temperature)
        )

        attempts_made = 0
        last_error: list[str] = []

        def _retry(attempt: int) -> LLMResponse | None:
            nonlocal attempts_made
            attempts_made = attempt
            error_text = last_error[-1] if last_error else "output did not pass validation"
            retry_prompt = self._builder.render(
                template,
                context,
                _with_correction(prompt_constraints, attempt, error_text),
                max_prompt_tokens,
            )
            try:
                candidate = self._client.execute(
                    LLMRequest(
                        prompt=retry_prompt,
                        max_tokens=max_tokens,
                        temperature=temperature,
                    )
                )
            except LLMServiceError as exc:
                logger.warning(
                    "GenerationService: retry %d for %s failed: %s",
                    attempt,
                    template.value,
                    exc,
                )
                return None
            try:
                self._validator.validate(candidate, validation)
            except ResponseValidationError as exc:
                last_error.append(str(exc))
            return candidate

        try:
            self._validator.validate(initial, validation)
        except ResponseValidationError as exc:
            last_error.append(str(exc))

        fallback = LLMResponse(text=fallback_text) if fallback_text is not None else None
        response = self._validator.resolve(initial, validation, _retry, fallback)

        if response is initial:
            status = STATUS_SUCCESS
        elif response is fallback:
            status = STATUS_FALLBACK
        else:
            status = STATUS_RETRIED

        logger.debug(
            "GenerationService: %s finished with status=%s after %d retries",
            template.value,
            status,
            attempts_made,
        )
        return GenerationResult(
            response=response,
            status=status,
            attempts=attempts_made,
            prompt=prompt,
        )
