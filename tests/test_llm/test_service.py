"""Unit tests for GenerationService.

Test organisation
-----------------
``TestFromConfig``
    Wiring a service from an ``EngineConfig``.

``TestGenerateSuccess``
    Valid first response: status, prompt and request parameters.

``TestGenerateRetries``
    Correction prompts, skipped attempts and the retried status.

``TestGenerateFailure``
    Fallback, exhaustion and initial-call errors.

``TestEndToEnd``
    Real client and cache with ``requests.post`` patched.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from nobody_engine.config import EngineConfig, LLMSettings
from nobody_engine.llm.client import LLMClient
from nobody_engine.llm.errors import (
    InvalidConfigError,
    LLMApiError,
    LLMTimeoutError,
    NumericalConstraintViolation,
    RetryExhaustedError,
)
from nobody_engine.llm.models import LLMRequest, LLMResponse
from nobody_engine.llm.prompt_builder import (
    PromptBuilder,
    PromptConstraints,
    PromptContext,
    PromptTemplate,
)
from nobody_engine.llm.service import GenerationService
from nobody_engine.llm.tokens import estimate_token_count
from nobody_engine.llm.validator import ValidationConstraints

CONTEXT = PromptContext(
    scene="Mountain gate",
    actor_name="Lin",
    actor_realm="Qi Condensation",
    actor_combat_power=120,
    history_events=["joined the sect", "won a sparring match"],
)
PROMPT_CONSTRAINTS = PromptConstraints(numerical_rules=["combat_power <= 500"])
VALIDATION = ValidationConstraints(max_combat_power=500)

VALID = LLMResponse(text=json.dumps({"character_update": {"combat_power": 150}}))
OVER_LIMIT = LLMResponse(text=json.dumps({"combat_power": 900}))
MISSING = LLMResponse(text=json.dumps({"summary": "nothing"}))


# ── Test helpers ──────────────────────────────────────────────────────────────


def _mock_client(*responses) -> MagicMock:
    client = MagicMock(spec=LLMClient)
    client.execute.side_effect = list(responses)
    return client


def _generate(service: GenerationService, **kwargs):
    return service.generate(
        PromptTemplate.NPC_DECISION,
        CONTEXT,
        PROMPT_CONSTRAINTS,
        VALIDATION,
        max_prompt_tokens=kwargs.pop("max_prompt_tokens", 400),
        **kwargs,
    )


def _sent_prompts(client: MagicMock) -> list[str]:
    return [c.args[0].prompt for c in client.execute.call_args_list]


# ── from_config ───────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestFromConfig:
    def test_unconfigured_llm_rejected(self):
        with pytest.raises(InvalidConfigError, match="not configured"):
            GenerationService.from_config(EngineConfig())

    def test_invalid_llm_settings_rejected(self):
        cfg = EngineConfig(llm=LLMSettings(endpoint="https://x", api_key="k", max_tokens=0))

        with pytest.raises(InvalidConfigError, match="max_tokens"):
            GenerationService.from_config(cfg)

    def test_settings_flow_into_components(self):
        cfg = EngineConfig(llm=LLMSettings(endpoint="https://x", api_key="k", model="m"))
        cfg.cache.max_entries = 16
        cfg.cache.ttl_seconds = 5.0

        service = GenerationService.from_config(cfg)

        assert service.client.config.endpoint == "https://x"
        assert service.client.config.model == "m"
        assert service.client.cache.max_entries == 16
        assert service.client.cache.ttl_seconds == 5.0


# ── Success ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestGenerateSuccess:
    def test_valid_first_response(self):
        client = _mock_client(VALID)
        service = GenerationService(client)

        result = _generate(service)

        assert result.response is VALID
        assert result.status == "success"
        assert result.attempts == 0
        client.execute.assert_called_once()

    def test_prompt_built_by_builder(self):
        client = _mock_client(VALID)
        builder = PromptBuilder()
        service = GenerationService(client, builder=builder)

        result = _generate(service, max_prompt_tokens=400)

        expected = builder.render(PromptTemplate.NPC_DECISION, CONTEXT, PROMPT_CONSTRAINTS, 400)
        assert result.prompt == expected
        assert _sent_prompts(client) == [expected]

    def test_request_overrides_forwarded(self):
        client = _mock_client(VALID)
        service = GenerationService(client)

        _generate(service, max_tokens=128, temperature=0.2)

        request = client.execute.call_args.args[0]
        assert isinstance(request, LLMRequest)
        assert request.max_tokens == 128
        assert request.temperature == 0.2

    def test_budget_applied_to_prompt(self):
        client = _mock_client(VALID)
        service = GenerationService(client)

        result = _generate(service, max_prompt_tokens=45)

        assert "joined the sect" not in result.prompt


# ── Retries ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestGenerateRetries:
    def test_retry_with_correction_note(self):
        client = _mock_client(MISSING, VALID)
        service = GenerationService(client)

        result = _generate(service)

        assert result.status == "retried"
        assert result.attempts == 1
        assert result.response is VALID

        initial_prompt, retry_prompt = _sent_prompts(client)
        assert retry_prompt != initial_prompt
        assert "[Correction attempt 1]" not in initial_prompt
        assert (
            "WorldRules:\n- [Correction attempt 1] The previous answer was rejected: "
            "missing required field: combat_power." in retry_prompt
        )
        assert retry_prompt.endswith("Do not violate any numerical or world constraints.\n")

    def test_caller_constraints_not_mutated(self):
        client = _mock_client(MISSING, VALID)
        constraints = PromptConstraints(world_rules=["no resurrection"])
        service = GenerationService(client)

        service.generate(
            PromptTemplate.NPC_DECISION,
            CONTEXT,
            constraints,
            VALIDATION,
            max_prompt_tokens=400,
        )

        assert constraints.world_rules == ["no resurrection"]

    def test_retry_prompt_degrades_to_fit_budget(self):
        # The note costs 19 more tokens than "- none"; at 73 the retry has to
        # give up the oldest history event that the initial prompt kept.
        client = _mock_client(MISSING, VALID)
        service = GenerationService(client)

        _generate(service, max_prompt_tokens=73)

        initial_prompt, retry_prompt = _sent_prompts(client)
        assert "- joined the sect\n" in initial_prompt
        assert "- joined the sect\n" not in retry_prompt
        assert "- won a sparring match\n" in retry_prompt
        assert "[Correction attempt 1]" in retry_prompt

    @pytest.mark.parametrize("budget", [20, 40, 45, 60, 73, 400])
    def test_every_sent_prompt_within_budget(self, budget):
        client = _mock_client(MISSING, OVER_LIMIT, VALID)
        service = GenerationService(client)

        _generate(service, max_prompt_tokens=budget)

        estimates = [estimate_token_count(p) for p in _sent_prompts(client)]
        assert len(estimates) == 3
        assert all(estimate <= budget for estimate in estimates), estimates

    def test_correction_quotes_latest_error(self):
        client = _mock_client(MISSING, OVER_LIMIT, VALID)
        service = GenerationService(client)

        result = _generate(service)

        assert result.attempts == 2
        third_prompt = _sent_prompts(client)[2]
        assert "[Correction attempt 2]" in third_prompt
        assert "combat_power 900 exceeds max 500" in third_prompt

    def test_client_error_during_retry_skips_attempt(self):
        client = _mock_client(MISSING, LLMApiError(503, "busy"), VALID)
        service = GenerationService(client)

        result = _generate(service)

        assert result.status == "retried"
        assert result.attempts == 2
        assert result.response is VALID


# ── Failure ───────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestGenerateFailure:
    def test_fallback_after_exhaustion(self):
        client = _mock_client(MISSING, MISSING, MISSING, MISSING)
        service = GenerationService(client)
        fallback_text = json.dumps({"combat_power": 120})

        result = _generate(service, fallback_text=fallback_text)

        assert result.status == "fallback"
        assert result.attempts == 3
        assert result.response.text == fallback_text
        assert client.execute.call_count == 4

    def test_invalid_fallback_raises(self):
        client = _mock_client(OVER_LIMIT, OVER_LIMIT, OVER_LIMIT, OVER_LIMIT)
        service = GenerationService(client)

        with pytest.raises(NumericalConstraintViolation):
            _generate(service, fallback_text=json.dumps({"combat_power": 501}))

    def test_exhausted_without_fallback(self):
        client = _mock_client(MISSING, MISSING, MISSING, OVER_LIMIT)
        service = GenerationService(client)

        with pytest.raises(RetryExhaustedError) as excinfo:
            _generate(service)

        assert "combat_power 900 exceeds max 500" in str(excinfo.value)

    def test_initial_client_error_propagates(self):
        client = _mock_client(LLMTimeoutError(30.0))
        service = GenerationService(client)

        with pytest.raises(LLMTimeoutError):
            _generate(service)

        client.execute.assert_called_once()


# ── End to end ────────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestEndToEnd:
    def test_retry_bypasses_cached_rejection(self, llm_config, http_response, chat_body):
        service = GenerationService(LLMClient(llm_config))
        replies = [
            http_response(200, chat_body(MISSING.text)),
            http_response(200, chat_body(VALID.text)),
        ]

        with patch("requests.post", side_effect=replies) as mock_post:
            result = _generate(service)

        assert result.status == "retried"
        assert mock_post.call_count == 2

    def test_repeat_generation_served_from_cache(self, llm_config, http_response, chat_body):
        service = GenerationService(LLMClient(llm_config))

        with patch(
            "requests.post", return_value=http_response(200, chat_body(VALID.text))
        ) as mock_post:
            first = _generate(service)
            second = _generate(service)

        assert first.response == second.response
        assert mock_post.call_count == 1
