"""Request-client configuration.

``LLMConfig`` is a frozen dataclass holding the five values a client needs
to talk to a backend: endpoint, credential, model, token ceiling and
default temperature.  It is built once (by the caller, or by
:func:`nobody_engine.config.load_config`) and never mutated afterwards.

Validation is explicit: :meth:`LLMConfig.validate` raises
:class:`~nobody_engine.llm.errors.InvalidConfigError` and
:class:`~nobody_engine.llm.client.LLMClient` calls it in its constructor,
so an invalid configuration can never reach the network layer.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from nobody_engine.llm.errors import InvalidConfigError

# Inclusive temperature range accepted by OpenAI-compatible backends.
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


def temperature_in_range(value: float) -> bool:
    """Return ``True`` if ``value`` lies in the accepted temperature range.

    NaN compares false against both bounds and is therefore rejected.
    """
    return MIN_TEMPERATURE <= value <= MAX_TEMPERATURE


@dataclass(frozen=True)
class LLMConfig:
    """Immutable backend configuration for one :class:`LLMClient`.

    Attributes:
        endpoint:    Full URL of the chat/completions endpoint.
        api_key:     Bearer credential.  Excluded from ``repr`` so it never
                     ends up in logs or tracebacks.
        model:       Model identifier sent with every request.
        max_tokens:  Ceiling for completion tokens.  Per-call overrides are
                     clamped to this value.
        temperature: Default sampling temperature, in ``[0.0, 2.0]``.
    """

    endpoint: str
    api_key: str = field(repr=False)
    model: str
    max_tokens: int
    temperature: float

    def validate(self) -> None:
        """Check every field, raising on the first violation.

        Raises:
            InvalidConfigError: If any field is blank or out of range.
        """
        if not self.endpoint or not self.endpoint.strip():
            raise InvalidConfigError("endpoint must not be empty")
        if not self.api_key or not self.api_key.strip():
            raise InvalidConfigError("api_key must not be empty")
        if not self.model or not self.model.strip():
            raise InvalidConfigError("model must not be empty")
        if self.max_tokens <= 0:
            raise InvalidConfigError("max_tokens must be greater than 0")
        if not temperature_in_range(self.temperature):
            raise InvalidConfigError("temperature must be in range [0.0, 2.0]")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LLMConfig:
        """Build a config from a plain mapping (e.g. a JSON document).

        Missing keys raise ``KeyError``; values are coerced to their field
        types.  The result is *not* validated; call :meth:`validate`.
        """
        return cls(
            endpoint=str(data["endpoint"]),
            api_key=str(data["api_key"]),
            model=str(data["model"]),
            max_tokens=int(data["max_tokens"]),
            temperature=float(data["temperature"]),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the config as a plain dict, credential included."""
        return asdict(self)
