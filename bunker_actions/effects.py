"""Effect interpreter: symbolic effects become clamped state mutations.

Each effect is resolved to a bucket, its intensity (1-10) is mapped to a
concrete magnitude by linear interpolation between the configured min and
max for that bucket, a sign is taken from the effect name, and the result
is applied to the named character or, for resource effects, to the shared
pool.

Buckets:
  health     AddHP / ReduceHP
  sanity     AddSanity / ReduceSanity
  hunger     AddHunger / ReduceHunger
  thirst     AddThirst / ReduceThirst
  resource   Add/Reduce Food, Water, Supplies   (integer amounts)
  status     InjureCharacter, HealCharacter, KillCharacter
  sickness   InfectCharacter, CureCharacter

Infection severity by intensity:
  1-2 Flu, 3-4 FoodPoisoning, 5 Fever, 6 Infection, 7 Dysentery,
  8 Pneumonia, 9 RadiationPoisoning, 10 Plague

Unknown effect types and unknown targets are logged and skipped; they
never abort the rest of the list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from bunker_actions.config import MagnitudeRange, MagnitudeTable
from bunker_actions.models import (
    INTENSITY_MAX,
    INTENSITY_MIN,
    Character,
    Effect,
    EffectType,
    SicknessType,
)

logger = logging.getLogger(__name__)

# (highest intensity in bracket, sickness)
INFECTION_TABLE: list[tuple[int, SicknessType]] = [
    (2, SicknessType.FLU),
    (4, SicknessType.FOOD_POISONING),
    (5, SicknessType.FEVER),
    (6, SicknessType.INFECTION),
    (7, SicknessType.DYSENTERY),
    (8, SicknessType.PNEUMONIA),
    (9, SicknessType.RADIATION_POISONING),
    (10, SicknessType.PLAGUE),
]

_STAT_EFFECTS: dict[EffectType, tuple[str, int]] = {
    EffectType.ADD_HP: ("health", 1),
    EffectType.REDUCE_HP: ("health", -1),
    EffectType.ADD_SANITY: ("sanity", 1),
    EffectType.REDUCE_SANITY: ("sanity", -1),
    EffectType.ADD_HUNGER: ("hunger", 1),
    EffectType.REDUCE_HUNGER: ("hunger", -1),
    EffectType.ADD_THIRST: ("thirst", 1),
    EffectType.REDUCE_THIRST: ("thirst", -1),
}

_RESOURCE_EFFECTS: dict[EffectType, tuple[str, int]] = {
    EffectType.ADD_FOOD: ("Food", 1),
    EffectType.REDUCE_FOOD: ("Food", -1),
    EffectType.ADD_WATER: ("Water", 1),
    EffectType.REDUCE_WATER: ("Water", -1),
    EffectType.ADD_SUPPLIES: ("Supplies", 1),
    EffectType.REDUCE_SUPPLIES: ("Supplies", -1),
}


class CharacterLookup(Protocol):
    def find(self, name: str) -> Character | None: ...


class ResourceAdjuster(Protocol):
    def adjust(self, resource: str, delta: int) -> None: ...


def lerp(low: float, high: float, t: float) -> float:
    return low + (high - low) * t


def intensity_to_value(intensity: int, low: float, high: float) -> float:
    """Map intensity 1..10 linearly onto [low, high]."""
    clamped = max(INTENSITY_MIN, min(INTENSITY_MAX, intensity))
    t = (clamped - INTENSITY_MIN) / (INTENSITY_MAX - INTENSITY_MIN)
    return lerp(low, high, t)


def sickness_for_intensity(intensity: int) -> SicknessType:
    for upper, sickness in INFECTION_TABLE:
        if intensity <= upper:
            return sickness
    return INFECTION_TABLE[-1][1]


class EffectInterpreter:
    """Applies effect lists through the character and resource collaborators.

    Args:
        characters: anything with find(name) -> Character | None
        resources:  anything with adjust(resource, delta)
        magnitudes: per-bucket min/max table from GameConfig
    """

    def __init__(
        self,
        characters: CharacterLookup,
        resources: ResourceAdjuster,
        magnitudes: MagnitudeTable | None = None,
    ) -> None:
        self._characters = characters
        self._resources = resources
        self._magnitudes = magnitudes or MagnitudeTable()

    def magnitude(self, bucket: str, intensity: int) -> float:
        """Concrete amount for *bucket* ("health", "sanity", ..., "resource")."""
        rng: MagnitudeRange = getattr(self._magnitudes, bucket)
        value = intensity_to_value(intensity, rng.min, rng.max)
        if bucket == "resource":
            return float(round(value))
        return value

    def apply(self, effects: Iterable[Effect]) -> int:
        """Apply effects in order. Returns how many were applied."""
        applied = 0
        for effect in effects:
            if self.apply_one(effect):
                applied += 1
        return applied

    def apply_one(self, effect: Effect) -> bool:
        logger.debug("applying effect %s", effect)
        try:
            kind = EffectType(effect.effect_type)
        except ValueError:
            logger.warning("Unknown effect type %r, skipped", effect.effect_type)
            return False

        if kind in _RESOURCE_EFFECTS:
            resource, sign = _RESOURCE_EFFECTS[kind]
            return self._apply_resource(resource, sign, effect)

        character = self._target(effect)
        if character is None:
            return False

        if kind in _STAT_EFFECTS:
            stat, sign = _STAT_EFFECTS[kind]
            amount = sign * self.magnitude(stat, effect.intensity)
            getattr(character, f"modify_{stat}")(amount)
            logger.info("%s %+.1f to %r → %.1f", stat, amount, character.name, getattr(character, stat))
        elif kind is EffectType.INJURE_CHARACTER:
            damage = self.magnitude("health", effect.intensity)
            character.injure(damage)
            logger.info("injured %r for %.1f → HP %.1f", character.name, damage, character.health)
        elif kind is EffectType.HEAL_CHARACTER:
            amount = self.magnitude("health", effect.intensity)
            character.heal(amount)
            logger.info("healed %r for %.1f → HP %.1f", character.name, amount, character.health)
        elif kind is EffectType.KILL_CHARACTER:
            character.kill()
            logger.info("killed %r", character.name)
        elif kind is EffectType.INFECT_CHARACTER:
            self._infect(character, effect.intensity)
        elif kind is EffectType.CURE_CHARACTER:
            character.cure()
            logger.info("cured %r of sickness and injuries", character.name)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _target(self, effect: Effect) -> Character | None:
        if not effect.target:
            logger.warning("Effect %s needs a character target, skipped", effect.effect_type)
            return None
        character = self._characters.find(effect.target)
        if character is None:
            logger.warning("Character %r not found, %s skipped", effect.target, effect.effect_type)
        return character

    def _apply_resource(self, resource: str, sign: int, effect: Effect) -> bool:
        amount = sign * int(self.magnitude("resource", effect.intensity))
        self._resources.adjust(resource, amount)
        logger.info("resource %s %+d", resource, amount)
        return True

    def _infect(self, character: Character, intensity: int) -> None:
        sickness = sickness_for_intensity(intensity)
        character.infect(sickness, intensity)
        lo, hi = self._magnitudes.infection_health_factors
        health = self._magnitudes.health
        hit = intensity_to_value(intensity, health.min * lo, health.max * hi)
        character.modify_health(-hit)
        logger.info(
            "infected %r with %s (severity %d) → HP %.1f",
            character.name, sickness.value, intensity, character.health,
        )
