"""Handlebars prompt rendering for per-category story requests.

Templates are rendered with pybars. Values are inserted with triple
staches so nothing is HTML-escaped, and anything that needs literal
braces (the JSON example) or list formatting is prepared in Python and
passed in as a ready-made string.

Both templates can be replaced through GameConfig.prompt_templates
("system" / "user"); the context keys below are the contract.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, NamedTuple, Protocol

import pybars

from bunker_actions.config import GameConfig
from bunker_actions.models import Category, Challenge, Character, Item

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

SYSTEM_TEMPLATE = """You are the story engine for a government fallout bunker survival game.
The game lasts {{total_days}} days. A family must survive in their underground bunker after a government-triggered catastrophe.

{{{category_guidance}}}

PACING:
- {{{pacing.label}}}. {{{pacing.directive}}}

CHARACTERS:
- The family members are: {{{character_names}}}
- You MUST use these exact names as the "target" in effects. Do NOT invent names.

AVAILABLE EFFECT TYPES:
Character stats: AddHP, ReduceHP, AddSanity, ReduceSanity, AddHunger, ReduceHunger, AddThirst, ReduceThirst
Resources: AddFood, ReduceFood, AddWater, ReduceWater, AddSupplies, ReduceSupplies
Character: InjureCharacter, HealCharacter, KillCharacter
Sickness: InfectCharacter (intensity determines severity/type), CureCharacter
Intensity is 1-10 (1=minor, 10=extreme). Use KillCharacter sparingly.
InfectCharacter intensity: 1-2=Flu, 3-4=FoodPoisoning, 5=Fever, 6=Infection, 7=Dysentery, 8=Pneumonia, 9=RadiationPoisoning, 10=Plague
Target must be one of: {{{character_names}}}
For resource effects, target can be empty.
{{#if recent_titles}}

RECENT EVENTS (do not reuse these titles):
{{{recent_titles}}}
{{/if}}

RESPONSE FORMAT (strict JSON):
You MUST respond with ONLY a JSON object in this exact format:
{{{response_format}}}

RULES:
- Always include 2-3 choices for follow-up actions.
- Each choice must have at least 1 effect.
- The "effects" array at the top level contains immediate consequences of the player's action.
- Do NOT include any text outside the JSON object.
- Be creative and varied. Each event should feel different.
- Vary the types of effects used. Don't always target the same character.
"""

USER_TEMPLATE = """=== DAY {{day}} of {{total_days}} | CATEGORY: {{{category_header}}} ===

FAMILY STATUS:
{{{family_status}}}

{{#if challenge}}
CHALLENGE PRESENTED TO PLAYER:
  Title: {{{challenge.title}}}
  Description: {{{challenge.description}}}

{{/if}}
{{#if target}}
TARGET FAMILY MEMBER: {{{target.name}}}
{{#if target.status}}
  Status: {{{target.status}}}
{{/if}}

{{/if}}
{{#if items}}
ITEMS PLAYER IS USING:
{{{items}}}
Consider these items in your response. They should influence the outcome.

{{/if}}
PLAYER'S RESPONSE: "{{{player_input}}}"

{{{evaluation}}}
"""

_GUIDANCE: dict[Category, str] = {
    Category.EXPLORATION: (
        "CATEGORY: EXPLORATION\n"
        "The player is attempting to solve a challenge in the bunker or during an expedition.\n"
        "Evaluate the player's typed solution. Be fair but realistic.\n"
        "- Creative, clever solutions should be rewarded with positive effects.\n"
        "- Reckless or poorly thought-out solutions should have negative consequences.\n"
        "- Partial solutions can have mixed results (some good, some bad).\n"
        "- If the player uses items, factor them into the outcome "
        "(tools help with repairs, meds help with medical issues, etc)."
    ),
    Category.DILEMMA: (
        "CATEGORY: DILEMMA\n"
        "The player is responding to a moral or practical dilemma with no single correct answer.\n"
        "Every choice should have BOTH positive AND negative consequences.\n"
        "- There is no perfect answer. Reward thoughtfulness, but show tradeoffs.\n"
        "- Short-term gains may cause long-term problems.\n"
        "- Helping one person may hurt another.\n"
        "- If the player uses items, it can soften negative consequences but not eliminate them."
    ),
    Category.FAMILY_REQUEST: (
        "CATEGORY: FAMILY REQUEST\n"
        "A family member needs help with a personal issue (sickness, injury, fear, conflict).\n"
        "Focus on the emotional and physical impact on the target character.\n"
        "- Good, attentive help should improve the character's condition.\n"
        "- Neglect or dismissive responses should worsen their state.\n"
        "- If the player uses items (especially meds for sickness), it should significantly help.\n"
        "- The response should feel personal and character-driven."
    ),
}

_HEADERS: dict[Category, str] = {
    Category.EXPLORATION: "EXPLORATION",
    Category.DILEMMA: "DILEMMA",
    Category.FAMILY_REQUEST: "FAMILYREQUEST",
}


def _evaluation(category: Category, target: str | None) -> str:
    if category is Category.EXPLORATION:
        return (
            "Evaluate how well the player's response solves the challenge. Generate consequences accordingly.\n"
            "Consider creativity, practicality, and risk level of their approach."
        )
    if category is Category.DILEMMA:
        return (
            "Evaluate the player's stance on this dilemma. Show both positive and negative consequences.\n"
            "There should be tradeoffs no matter what they chose."
        )
    who = target or "the family member"
    return (
        f"Evaluate how the player's response helps (or fails to help) {who}.\n"
        "Focus effects primarily on the target family member."
    )


def response_format(example_target: str) -> str:
    """JSON example shown to the model, with a real character name as target."""
    return (
        "{\n"
        '  "title": "Short event title",\n'
        '  "description": "2-3 sentences describing what happens as a result of the player\'s action",\n'
        '  "effects": [\n'
        '    {"effectType": "ReduceWater", "intensity": 5, "target": ""}\n'
        "  ],\n"
        '  "choices": [\n'
        "    {\n"
        '      "text": "Follow-up choice description",\n'
        f'      "effects": [{{"effectType": "ReduceHP", "intensity": 3, "target": "{example_target}"}}]\n'
        "    },\n"
        "    {\n"
        '      "text": "Alternative follow-up",\n'
        '      "effects": [{"effectType": "ReduceFood", "intensity": 4, "target": ""}]\n'
        "    }\n"
        "  ]\n"
        "}"
    )


def stat_line(character: Character) -> str:
    return (
        f"- {character.name}: HP={character.health:.0f} Hunger={character.hunger:.0f} "
        f"Thirst={character.thirst:.0f} Sanity={character.sanity:.0f} [{character.status_summary()}]"
    )


class Prompt(NamedTuple):
    system: str
    user: str


class _Roster(Protocol):
    def find(self, name: str) -> Character | None: ...
    def all(self) -> list[Character]: ...
    def all_alive(self) -> list[Character]: ...


class _ItemLookup(Protocol):
    def get(self, item_id: str) -> Item | None: ...


class _TitleSource(Protocol):
    def recent_titles(self, limit: int) -> list[str]: ...


class PromptComposer:
    """Builds the (system, user) prompt pair for one category submission.

    Reads live character state at call time; otherwise deterministic for
    the same inputs.
    """

    def __init__(
        self,
        config: GameConfig,
        characters: _Roster,
        items: _ItemLookup | None = None,
        story_log: _TitleSource | None = None,
    ) -> None:
        self._config = config
        self._characters = characters
        self._items = items
        self._story_log = story_log
        self._system_tpl = config.prompt_templates.get("system", SYSTEM_TEMPLATE)
        self._user_tpl = config.prompt_templates.get("user", USER_TEMPLATE)

    def compose(
        self,
        category: Category,
        *,
        day: int,
        challenge: Challenge | None,
        player_input: str,
        items: Sequence[str] = (),
        target: str | None = None,
    ) -> Prompt:
        system = render_prompt(self._system_tpl, self.system_context(category, day))
        user = render_prompt(
            self._user_tpl,
            self.user_context(category, day, challenge, player_input, items, target),
        )
        logger.debug("composed %s prompt (%d + %d chars)", category.value, len(system), len(user))
        return Prompt(system=system, user=user)

    # ------------------------------------------------------------------
    # Context builders
    # ------------------------------------------------------------------

    def system_context(self, category: Category, day: int) -> dict[str, Any]:
        alive = self._characters.all_alive()
        names = ", ".join(c.name for c in alive) or "Unknown"
        example_target = alive[0].name if alive else "Father"
        pacing = self._config.pacing_for(day)

        recent = ""
        limit = self._config.recent_titles_in_prompt
        if self._story_log is not None and limit > 0:
            recent = "\n".join(f"- {t}" for t in self._story_log.recent_titles(limit))

        return {
            "total_days": self._config.total_days,
            "category": category.value,
            "category_guidance": _GUIDANCE[category],
            "pacing": {"label": pacing.label, "directive": pacing.directive},
            "character_names": names,
            "recent_titles": recent,
            "response_format": response_format(example_target),
        }

    def user_context(
        self,
        category: Category,
        day: int,
        challenge: Challenge | None,
        player_input: str,
        items: Sequence[str],
        target: str | None,
    ) -> dict[str, Any]:
        family = self._characters.all()
        family_status = "\n".join(stat_line(c) for c in family) or "- No family data available."

        ctx: dict[str, Any] = {
            "day": day,
            "total_days": self._config.total_days,
            "category": category.value,
            "category_header": _HEADERS[category],
            "family_status": family_status,
            "challenge": None,
            "target": None,
            "items": "\n".join(self._item_line(i) for i in items),
            "player_input": player_input,
            "evaluation": _evaluation(category, target),
        }

        if challenge is not None:
            ctx["challenge"] = {"title": challenge.title, "description": challenge.describe(target)}

        if category is Category.FAMILY_REQUEST and target:
            status = ""
            character = self._characters.find(target)
            if character is not None:
                status = (
                    f"HP={character.health:.0f} Hunger={character.hunger:.0f} "
                    f"Sanity={character.sanity:.0f} [{character.status_summary()}]"
                )
            ctx["target"] = {"name": target, "status": status}

        return ctx

    def _item_line(self, item_id: str) -> str:
        item = self._items.get(item_id) if self._items is not None else None
        if item is None:
            return f"  - {item_id} (Unknown)"
        return f"  - {item.name} ({item.item_type.value})"
