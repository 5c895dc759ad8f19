"""Domain validation for LLM responses.

``ResponseValidator`` decides whether a normalised
:class:`~nobody_engine.llm.models.LLMResponse` may be handed to the game.
A response that fails raises a typed
:class:`~nobody_engine.llm.errors.ResponseValidationError`.

Validation pipeline (applied in order)
--------------------------------------
1. **Empty check**: blank text → :class:`EmptyResponseError`.
2. **JSON gate**: if ``require_json`` is false, the response passes.
3. **JSON parse**: unparseable text → :class:`InvalidJsonError` carrying
   the parser's message.
4. **Numerical bounds**: for each bound the caller declared, the field is
   looked up through its prioritised path list (nested under
   ``character_update`` first, then top level).  No value at any path →
   :class:`MissingFieldError`; value out of bounds →
   :class:`NumericalConstraintViolation`.

Retry-or-fallback
-----------------
:meth:`ResponseValidator.resolve` is the caller-facing guarantee: it
either returns a response that passed validation (the initial one, a retry
candidate, or the caller's fallback) or raises.  It never returns an
unvalidated response.  The caller supplies ``retry_fn`` because only the
caller knows what a better retry prompt looks like.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from nobody_engine.llm.errors import (
    EmptyResponseError,
    InvalidJsonError,
    MissingFieldError,
    NumericalConstraintViolation,
    ResponseValidationError,
    RetryExhaustedError,
)
from nobody_engine.llm.models import LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

_NO_RETRY_RESPONSE = "no retry response available"

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1

# Prioritised JSON-pointer paths per logical field.  The first path that
# resolves to an in-range non-negative integer wins.
FIELD_PATHS: dict[str, tuple[str, ...]] = {
    "realm_level": ("/character_update/realm_level", "/realm_level"),
    "combat_power": ("/character_update/combat_power", "/combat_power"),
    "current_age": ("/character_update/current_age", "/current_age"),
}


@dataclass(frozen=True)
class ValidationConstraints:
    """What a caller requires of a response.

    Attributes:
        require_json:     Parse the text as JSON and check bounds.  When
                          ``False`` only the empty check runs.
        max_realm_level:  Inclusive upper bound on ``realm_level``.
        min_combat_power: Inclusive lower bound on ``combat_power``.
        max_combat_power: Inclusive upper bound on ``combat_power``.
        max_current_age:  Inclusive upper bound on ``current_age``.
    """

    require_json: bool = True
    max_realm_level: int | None = None
    min_combat_power: int | None = None
    max_combat_power: int | None = None
    max_current_age: int | None = None

    @classmethod
    def text_only(cls) -> ValidationConstraints:
        """Constraints for free-text output: only the empty check applies."""
        return cls(require_json=False)


def _resolve_pointer(document: Any, pointer: str) -> Any:
    """Resolve a ``/a/b`` style pointer; return ``None`` if any hop is missing."""
    current = document
    for part in pointer.lstrip("/").split("/"):
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list):
            if not part.isdigit() or int(part) >= len(current):
                return None
            current = current[int(part)]
        else:
            return None
    return current


def _lookup_uint(document: Any, paths: tuple[str, ...], upper: int) -> int | None:
    """Return the first non-negative integer ``<= upper`` found along ``paths``."""
    for path in paths:
        value = _resolve_pointer(document, path)
        if isinstance(value, bool) or not isinstance(value, int):
            continue
        if 0 <= value <= upper:
            return value
    return None


class ResponseValidator:
    """Validates responses and runs the retry-or-fallback loop.

    Attributes:
        _max_attempts: Retry slots offered to ``retry_fn`` by :meth:`resolve`.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ── Single-response validation ────────────────────────────────────────────

    def validate(self, response: LLMResponse, constraints: ValidationConstraints) -> None:
        """Raise if ``response`` does not satisfy ``constraints``.

        Raises:
            EmptyResponseError:           Blank text.
            InvalidJsonError:             JSON required but unparseable.
            MissingFieldError:            A bounded field is absent.
            NumericalConstraintViolation: A bounded field is out of range.
        """
        # ── 1. Empty check ────────────────────────────────────────────────────
        if not response.text or not response.text.strip():
            raise EmptyResponseError()

        # ── 2. JSON gate ──────────────────────────────────────────────────────
        if not constraints.require_json:
            return

        # ── 3–4. Parse, then check bounds ─────────────────────────────────────
        document = self.validate_json_format(response.text)
        self.validate_numerical_constraints(document, constraints)

    def validate_json_format(self, response_text: str) -> Any:
        """Parse ``response_text`` as JSON or raise :class:`InvalidJsonError`."""
        try:
            return json.loads(response_text)
        except json.JSONDecodeError as exc:
            raise InvalidJsonError(str(exc)) from exc

    def validate_numerical_constraints(
        self, document: Any, constraints: ValidationConstraints
    ) -> None:
        """Check every declared bound against ``document``."""
        if constraints.max_realm_level is not None:
            level = self._require("realm_level", document, _U32_MAX)
            if level > constraints.max_realm_level:
                raise NumericalConstraintViolation(
                    f"realm_level {level} exceeds max {constraints.max_realm_level}"
                )

        if constraints.min_combat_power is not None:
            power = self._require("combat_power", document, _U64_MAX)
            if power < constraints.min_combat_power:
                raise NumericalConstraintViolation(
                    f"combat_power {power} is below min {constraints.min_combat_power}"
                )

        if constraints.max_combat_power is not None:
            power = self._require("combat_power", document, _U64_MAX)
            if power > constraints.max_combat_power:
                raise NumericalConstraintViolation(
                    f"combat_power {power} exceeds max {constraints.max_combat_power}"
                )

        if constraints.max_current_age is not None:
            age = self._require("current_age", document, _U32_MAX)
            if age > constraints.max_current_age:
                raise NumericalConstraintViolation(
                    f"current_age {age} exceeds max {constraints.max_current_age}"
                )

    def is_valid(self, response: LLMResponse, constraints: ValidationConstraints) -> bool:
        try:
            self.validate(response, constraints)
        except ResponseValidationError:
            return False
        return True

    # ── Retry-or-fallback ─────────────────────────────────────────────────────

    def resolve(
        self,
        initial_response: LLMResponse,
        constraints: ValidationConstraints,
        retry_fn: Callable[[int], LLMResponse | None],
        fallback_response: LLMResponse | None = None,
    ) -> LLMResponse:
        """Return a response that passed validation, or raise.

        Args:
            initial_response:  The response the caller already has.
            constraints:       What the response must satisfy.
            retry_fn:          Called with the 1-based attempt number; returns
                               a new candidate or ``None`` to skip the slot.
                               Never called when ``initial_response`` is valid.
            fallback_response: Known-good response used when every attempt
                               fails.  It is validated too.

        Returns:
            The first valid response among initial, retries and fallback.

        Raises:
            ResponseValidationError: The fallback itself failed validation
                                     (its own error is propagated).
            RetryExhaustedError:     No attempt succeeded and there was no
                                     fallback.
        """
        try:
            self.validate(initial_response, constraints)
        except ResponseValidationError as exc:
            logger.warning("ResponseValidator: initial response rejected: %s", exc)
        else:
            return initial_response

        last_error: ResponseValidationError | None = None
        for attempt in range(1, self._max_attempts + 1):
            candidate = retry_fn(attempt)
            if candidate is None:
                logger.debug("ResponseValidator: attempt %d produced no candidate", attempt)
                continue
            try:
                self.validate(candidate, constraints)
            except ResponseValidationError as exc:
                logger.warning("ResponseValidator: attempt %d rejected: %s", attempt, exc)
                last_error = exc
                continue
            return candidate

        if fallback_response is not None:
            self.validate(fallback_response, constraints)
            logger.info(
                "ResponseValidator: using fallback after %d attempts", self._max_attempts
            )
            return fallback_response

        raise RetryExhaustedError(
            attempts=self._max_attempts,
            last_error=str(last_error) if last_error is not None else _NO_RETRY_RESPONSE,
        )

    # ── Internal helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _require(field: str, document: Any, upper: int) -> int:
        value = _lookup_uint(document, FIELD_PATHS[field], upper)
        if value is None:
            raise MissingFieldError(field)
        return value
