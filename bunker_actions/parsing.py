"""Turn extracted JSON into typed story events.

The generation service is asked for an exact shape but only loosely obeys
it. Recovery happens in three layers:

  direct      validate the top-level object straight into StoryEvent
  wrappers    the real payload sits under a wrapper key ("event",
              "data", ...) or inside a one-element array; unwrap and retry
  aliases     snake_case / synonym keys and sloppy effect-type
              spellings are normalized to the canonical vocabulary

Anything still invalid after that raises EventParseError.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from bunker_actions.models import EffectType, StoryEvent

logger = logging.getLogger(__name__)

WRAPPER_KEYS = ("event", "story_event", "storyEvent", "data", "result", "response")

_EVENT_KEY_ALIASES = {
    "effect": "effects",
    "consequences": "effects",
    "immediate_effects": "effects",
    "options": "choices",
    "follow_ups": "choices",
    "name": "title",
    "summary": "description",
}

_EFFECT_KEY_ALIASES = {
    "effect_type": "effectType",
    "type": "effectType",
    "effect": "effectType",
    "level": "intensity",
    "strength": "intensity",
    "character": "target",
}

_CHOICE_KEY_ALIASES = {
    "description": "text",
    "label": "text",
    "option": "text",
    "consequences": "effects",
}

# Spellings the service has been seen to use for vocabulary words
_EFFECT_TYPE_ALIASES = {
    "addhealth": EffectType.ADD_HP,
    "reducehealth": EffectType.REDUCE_HP,
    "damage": EffectType.REDUCE_HP,
    "heal": EffectType.HEAL_CHARACTER,
    "injure": EffectType.INJURE_CHARACTER,
    "kill": EffectType.KILL_CHARACTER,
    "infect": EffectType.INFECT_CHARACTER,
    "cure": EffectType.CURE_CHARACTER,
    "addsupply": EffectType.ADD_SUPPLIES,
    "reducesupply": EffectType.REDUCE_SUPPLIES,
}


class EventParseError(ValueError):
    """Raised when JSON is present but cannot be read as the expected shape."""


# ---------------------------------------------------------------------------
# Vocabulary normalization
# ---------------------------------------------------------------------------

def normalize_effect_type(raw: object) -> str:
    """Canonical effect-type name, or the stripped input if it is unknown."""
    text = str(raw or "").strip()
    key = text.replace("_", "").replace(" ", "").lower()
    for member in EffectType:
        if member.value.lower() == key:
            return member.value
    alias = _EFFECT_TYPE_ALIASES.get(key)
    return alias.value if alias else text


def _rename_keys(data: dict, aliases: dict[str, str]) -> dict:
    out: dict[str, Any] = {}
    for key, value in data.items():
        canonical = aliases.get(key, key)
        # An explicit canonical key wins over an alias
        if canonical in out and canonical != key:
            continue
        out[canonical] = value
    return out


def _normalize_effect(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    effect = _rename_keys(raw, _EFFECT_KEY_ALIASES)
    if "effectType" in effect:
        effect["effectType"] = normalize_effect_type(effect["effectType"])
    if effect.get("intensity") is None:
        effect.pop("intensity", None)
    return effect


def _normalize_effects(raw: Any) -> Any:
    if raw is None:
        return []
    if not isinstance(raw, list):
        return raw
    return [_normalize_effect(e) for e in raw]


def _normalize_choice(raw: Any) -> Any:
    if isinstance(raw, str):
        return {"text": raw, "effects": []}
    if not isinstance(raw, dict):
        return raw
    choice = _rename_keys(raw, _CHOICE_KEY_ALIASES)
    choice["effects"] = _normalize_effects(choice.get("effects"))
    return choice


def _normalize_event(data: dict) -> dict:
    event = _rename_keys(data, _EVENT_KEY_ALIASES)
    event["effects"] = _normalize_effects(event.get("effects"))
    choices = event.get("choices")
    if choices is None:
        event["choices"] = []
    elif isinstance(choices, list):
        event["choices"] = [_normalize_choice(c) for c in choices]
    return event


# ---------------------------------------------------------------------------
# Story events
# ---------------------------------------------------------------------------

def _looks_like_event(data: Any) -> bool:
    return isinstance(data, dict) and ("title" in data or "description" in data)


def _unwrap(data: Any) -> Any:
    """Find the nested payload inside wrapper keys or a one-element array."""
    if isinstance(data, list) and len(data) == 1:
        return data[0]
    if isinstance(data, dict):
        for key in WRAPPER_KEYS:
            nested = data.get(key)
            if isinstance(nested, str):
                try:
                    nested = json.loads(nested)
                except json.JSONDecodeError:
                    continue
            if isinstance(nested, (dict, list)):
                return nested
    return None


def _validate(data: dict) -> StoryEvent:
    try:
        return StoryEvent.model_validate(_normalize_event(data))
    except ValidationError as e:
        raise EventParseError(f"Story event does not match schema: {e.error_count()} error(s)") from e


def parse_story_event(json_text: str) -> StoryEvent:
    """Parse extracted JSON into a StoryEvent.

    Raises EventParseError for invalid JSON, a payload missing title or
    description, or an "effects" value that is not a list.
    """
    try:
        data: Any = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise EventParseError(f"Invalid JSON: {e}") from e

    # Direct shape first, then peel wrappers (at most a few levels deep)
    for _ in range(4):
        if _looks_like_event(data):
            return _validate(data)
        unwrapped = _unwrap(data)
        if unwrapped is None:
            break
        logger.debug("story event payload unwrapped one level")
        data = unwrapped

    raise EventParseError("No story event (title/description) found in payload")
