"""Structured prompt assembly with a token budget.

``PromptBuilder`` renders a fixed-layout prompt from a template kind, a
:class:`PromptContext` and a :class:`PromptConstraints`, then shrinks it
until it fits the caller's token budget.

Prompt layout
-------------
::

    [Task]
    <template instruction>

    [Context]
    Scene: ...            (each field only when present)
    Location: ...
    Actor: ...
    Realm: ...
    CombatPower: ...
    WorldSetting: ...
    RecentHistory:
    - <oldest kept event>
    - <newest event>      (or "- none")

    [Constraints]
    NumericalRules:
    - ...                 (or "- none")
    WorldRules:
    - ...                 (or "- none")

    [OutputRequirements]
    <schema hint or default instruction>
    Do not violate any numerical or world constraints.

Degradation order
-----------------
When the rendered prompt is over budget the builder re-renders after each
of these steps, stopping as soon as it fits:

1. Drop the oldest remaining history item, one at a time, until none are
   left.
2. Truncate each long field (scene, location, actor name, realm, world
   summary, every history line) to 256 characters plus ``...``.
3. Tighten that limit to 128 characters.
4. Hard-truncate the whole rendered text to ``max_prompt_tokens * 4``
   characters and return it.

The most recent history and the start of every field survive longest.
Step 4 is the only path whose output is not re-estimated against the budget.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum

from nobody_engine.llm.tokens import CHARS_PER_TOKEN, estimate_token_count

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_ITEMS = 12

# Per-field character limits applied in degradation steps 2 and 3.
_TEXT_LIMITS: tuple[int, ...] = (256, 128)

_ELLIPSIS = "..."

_DEFAULT_OUTPUT_REQUIREMENT = "Return valid JSON with deterministic fields when possible."
_CONSTRAINT_REMINDER = "Do not violate any numerical or world constraints."


class PromptTemplate(Enum):
    """Kinds of narrative request the builder knows how to introduce."""

    SCRIPT_GENERATION = "script_generation"
    OPTION_GENERATION = "option_generation"
    NPC_DECISION = "npc_decision"
    PLOT_GENERATION = "plot_generation"

    @property
    def instruction(self) -> str:
        """Task line placed under the ``[Task]`` header."""
        return _INSTRUCTIONS[self]


_INSTRUCTIONS: dict[PromptTemplate, str] = {
    PromptTemplate.SCRIPT_GENERATION: (
        "Generate a complete cultivation world script with coherent settings."
    ),
    PromptTemplate.OPTION_GENERATION: (
        "Generate 2 to 5 actionable player options for the current scene."
    ),
    PromptTemplate.NPC_DECISION: (
        "Generate an NPC decision consistent with personality and memory."
    ),
    PromptTemplate.PLOT_GENERATION: (
        "Generate novel-style plot text that follows from the latest events."
    ),
}


@dataclass
class PromptContext:
    """Narrative facts for one prompt.  Every field is optional."""

    scene: str | None = None
    location: str | None = None
    actor_name: str | None = None
    actor_realm: str | None = None
    actor_combat_power: int | None = None
    history_events: list[str] = field(default_factory=list)
    world_setting_summary: str | None = None


@dataclass
class PromptConstraints:
    """Rule lines and an optional output-schema hint for one prompt."""

    numerical_rules: list[str] = field(default_factory=list)
    world_rules: list[str] = field(default_factory=list)
    output_schema_hint: str | None = None


def _truncate(text: str, limit: int | None) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with ``...``."""
    if limit is None or len(text) <= limit:
        return text
    return text[:limit] + _ELLIPSIS


class PromptBuilder:
    """Renders bounded prompts.

    Stateless apart from the history cap, so one instance can be shared
    across threads.

    Attributes:
        _max_history_items: Upper bound on history lines ever rendered.
    """

    def __init__(self, max_history_items: int = DEFAULT_MAX_HISTORY_ITEMS) -> None:
        """Initialise the builder.

        Args:
            max_history_items: History cap; values below 1 are raised to 1.
        """
        self._max_history_items = max(max_history_items, 1)

    @property
    def max_history_items(self) -> int:
        return self._max_history_items

    # ── Public API ────────────────────────────────────────────────────────────

    def build_prompt(
        self,
        template: PromptTemplate,
        context: PromptContext,
        constraints: PromptConstraints,
    ) -> str:
        """Render without a token budget (history cap still applies)."""
        return self.render(template, context, constraints)

    def render(
        self,
        template: PromptTemplate,
        context: PromptContext,
        constraints: PromptConstraints,
        max_prompt_tokens: int | None = None,
    ) -> str:
        """Render a prompt that fits ``max_prompt_tokens``.

        Args:
            template:          Template kind supplying the task line.
            context:           Narrative facts.
            constraints:       Rule lines and output schema hint.
            max_prompt_tokens: Token budget; ``None`` means unbounded.
                               Values below 1 are treated as 1.

        Returns:
            The prompt text.  Its estimate is within budget unless the
            last-resort hard truncation was needed (see module docstring).
        """
        token_limit = sys.maxsize if max_prompt_tokens is None else max(max_prompt_tokens, 1)
        history_count = min(len(context.history_events), self._max_history_items)
        text_limits = iter(_TEXT_LIMITS)
        text_limit: int | None = None

        while True:
            prompt = self._compose(template, context, constraints, history_count, text_limit)
            if self.estimate_prompt_tokens(prompt) <= token_limit:
                return prompt

            if history_count > 0:
                history_count -= 1
                continue

            next_limit = next(text_limits, None)
            if next_limit is not None:
                logger.debug("PromptBuilder: truncating fields to %d chars", next_limit)
                text_limit = next_limit
                continue

            logger.debug(
                "PromptBuilder: hard-truncating prompt to %d chars",
                token_limit * CHARS_PER_TOKEN,
            )
            return prompt[: token_limit * CHARS_PER_TOKEN]

    def estimate_prompt_tokens(self, prompt: str) -> int:
        return estimate_token_count(prompt)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _compose(
        self,
        template: PromptTemplate,
        context: PromptContext,
        constraints: PromptConstraints,
        history_count: int,
        text_limit: int | None,
    ) -> str:
        """Render one candidate prompt at a given degradation level."""
        lines: list[str] = ["[Task]", template.instruction, "", "[Context]"]

        labelled = (
            ("Scene", context.scene),
            ("Location", context.location),
            ("Actor", context.actor_name),
            ("Realm", context.actor_realm),
        )
        for label, value in labelled:
            if value is not None:
                lines.append(f"{label}: {_truncate(value, text_limit)}")
        if context.actor_combat_power is not None:
            lines.append(f"CombatPower: {context.actor_combat_power}")
        if context.world_setting_summary is not None:
            lines.append(f"WorldSetting: {_truncate(context.world_setting_summary, text_limit)}")

        lines.append("RecentHistory:")
        if history_count > 0:
            for event in context.history_events[-history_count:]:
                lines.append(f"- {_truncate(event, text_limit)}")
        else:
            lines.append("- none")
        lines.append("")

        lines.append("[Constraints]")
        lines.extend(_bullet_block("NumericalRules", constraints.numerical_rules))
        lines.extend(_bullet_block("WorldRules", constraints.world_rules))
        lines.append("")

        lines.append("[OutputRequirements]")
        if constraints.output_schema_hint is not None:
            lines.append(constraints.output_schema_hint)
        else:
            lines.append(_DEFAULT_OUTPUT_REQUIREMENT)
        lines.append(_CONSTRAINT_REMINDER)

        return "\n".join(lines) + "\n"


def _bullet_block(title: str, rules: list[str]) -> list[str]:
    if not rules:
        return [f"{title}:", "- none"]
    return [f"{title}:", *(f"- {rule}" for rule in rules)]
