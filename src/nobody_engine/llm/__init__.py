"""LLM request orchestration for the nobody engine.

Every piece of narrative text the game asks a model for goes through this
package: structured context becomes a bounded prompt, the prompt goes to an
OpenAI-compatible backend behind a cache and a retry policy, and the answer
is validated before the game may act on it.

Architecture
------------
The layer is *non-authoritative*.  It never mutates game state; callers
decide what to do with a validated response, and whether to fall back to a
rule-based path when a call fails.  No default text is ever invented on
their behalf.

Package structure
-----------------
errors.py           Typed exceptions: ``LLMServiceError`` (client side) and
                    ``ResponseValidationError`` (validator side).
config.py           LLMConfig:          frozen backend configuration.
models.py           LLMRequest / LLMResponse value types.
tokens.py           estimate_token_count: whitespace/char heuristic.
prompt_builder.py   PromptBuilder:      fixed-layout prompt with budget
                    degradation.
cache.py            ResponseCache:      TTL + LRU, thread-safe.
client.py           LLMClient:          validation, fingerprint, cache,
                    sync HTTP via ``requests`` with linear-backoff retries.
validator.py        ResponseValidator:  JSON and numerical checks plus the
                    retry-or-fallback combinator.
service.py          GenerationService:  builds, executes and validates in
                    one call.

Typical call flow
-----------------
1. caller loads ``EngineConfig`` and builds ``GenerationService.from_config``
2. ``service.generate(template, context, constraints, validation, ...)``
3. PromptBuilder renders the prompt within ``max_prompt_tokens``
4. LLMClient returns a cached response or calls the backend
5. ResponseValidator accepts it, retries, or applies the fallback
"""

from nobody_engine.llm.cache import ResponseCache
from nobody_engine.llm.client import LLMClient
from nobody_engine.llm.config import LLMConfig
from nobody_engine.llm.errors import LLMServiceError, ResponseValidationError
from nobody_engine.llm.models import LLMRequest, LLMResponse
from nobody_engine.llm.prompt_builder import (
    PromptBuilder,
    PromptConstraints,
    PromptContext,
    PromptTemplate,
)
from nobody_engine.llm.service import GenerationResult, GenerationService
from nobody_engine.llm.validator import ResponseValidator, ValidationConstraints

__all__ = [
    "GenerationResult",
    "GenerationService",
    "LLMClient",
    "LLMConfig",
    "LLMRequest",
    "LLMResponse",
    "LLMServiceError",
    "PromptBuilder",
    "PromptConstraints",
    "PromptContext",
    "PromptTemplate",
    "ResponseCache",
    "ResponseValidationError",
    "ResponseValidator",
    "ValidationConstraints",
]
