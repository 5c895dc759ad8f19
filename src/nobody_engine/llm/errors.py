"""Typed exceptions for the LLM pipeline.

Two independent hierarchies:

``LLMServiceError``
    Raised by :class:`~nobody_engine.llm.client.LLMClient` and by
    :meth:`~nobody_engine.llm.config.LLMConfig.validate`.  Covers invalid
    configuration, invalid requests, transport failures, upstream API
    errors and unparseable response bodies.

``ResponseValidationError``
    Raised by :class:`~nobody_engine.llm.validator.ResponseValidator` when
    a well-formed response still cannot be trusted by the game (empty,
    malformed JSON, missing field, numerical rule broken, retries
    exhausted).

Callers that only care about "the model call did not produce something
usable" can catch both bases.  Nothing in the pipeline substitutes a
default value for a failed call.
"""

from __future__ import annotations

# =============================================================================
# CLIENT ERRORS
# =============================================================================


class LLMServiceError(RuntimeError):
    """Base exception for request-client failures."""


class InvalidConfigError(LLMServiceError):
    """The client configuration failed validation.  Never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(f"invalid config: {message}")


class InvalidRequestError(LLMServiceError):
    """The caller's request failed validation.  Never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(f"invalid request: {message}")


class LLMTimeoutError(LLMServiceError):
    """The backend did not answer within the per-call timeout."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        if timeout_seconds is None:
            super().__init__("llm request timed out")
        else:
            super().__init__(f"llm request timed out after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class LLMHttpError(LLMServiceError):
    """Transport-level failure (connection refused, reset, DNS, ...)."""

    def __init__(self, message: str) -> None:
        super().__init__(f"http request failed: {message}")


class LLMApiError(LLMServiceError):
    """The backend answered with a non-success status.

    Attributes:
        status_code: HTTP status returned by the backend.
        body:        Response body text, or a placeholder when the body
                     could not be read.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"llm api returned error: status={status_code} body={body}")
        self.status_code = status_code
        self.body = body


class InvalidResponseError(LLMServiceError):
    """A 2xx body did not contain generated text in any accepted shape."""

    def __init__(self, message: str) -> None:
        super().__init__(f"invalid llm response: {message}")


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ResponseValidationError(ValueError):
    """Base exception for response validation failures."""


class EmptyResponseError(ResponseValidationError):
    """Response text is empty after trimming."""

    def __init__(self) -> None:
        super().__init__("response text is empty")


class InvalidJsonError(ResponseValidationError):
    """Response text is not valid JSON although JSON was required."""

    def __init__(self, message: str) -> None:
        super().__init__(f"invalid json: {message}")


class MissingFieldError(ResponseValidationError):
    """A constrained field was found at none of its accepted paths.

    Attributes:
        field: Logical field name (``realm_level``, ``combat_power``, ...).
    """

    def __init__(self, field: str) -> None:
        super().__init__(f"missing required field: {field}")
        self.field = field


class NumericalConstraintViolation(ResponseValidationError):
    """A numeric field is outside the bounds the caller declared."""

    def __init__(self, message: str) -> None:
        super().__init__(f"numerical constraint violation: {message}")


class RetryExhaustedError(ResponseValidationError):
    """Every retry attempt failed and no usable fallback was supplied.

    Attributes:
        attempts:   Number of attempt slots that were consumed.
        last_error: Text of the last validation failure observed, or
                    ``"no retry response available"``.
    """

    def __init__(self, attempts: int, last_error: str) -> None:
        super().__init__(
            f"validation failed after {attempts} attempts, last error: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error
