"""Core domain models.

Every stage of the daily action pipeline operates on these types.
Pydantic is used for validation and serialisation at every data boundary:
the generation service's JSON reply is validated straight into StoryEvent,
and the HTTP layer dumps DailyActionState / PlayerActionResult as-is.
"""

from __future__ import annotations

import logging
import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

STAT_MIN = 0.0
STAT_MAX = 100.0
INTENSITY_MIN = 1
INTENSITY_MAX = 10

# Below this, health/hunger/thirst puts a living character in critical condition
CRITICAL_THRESHOLD = 20.0


def clamp(value: float, low: float = STAT_MIN, high: float = STAT_MAX) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

class Category(str, Enum):
    """The fixed set of action types offered to the player each day."""

    EXPLORATION = "Exploration"
    DILEMMA = "Dilemma"
    FAMILY_REQUEST = "FamilyRequest"


class EffectType(str, Enum):
    ADD_HP = "AddHP"
    REDUCE_HP = "ReduceHP"
    ADD_SANITY = "AddSanity"
    REDUCE_SANITY = "ReduceSanity"
    ADD_HUNGER = "AddHunger"
    REDUCE_HUNGER = "ReduceHunger"
    ADD_THIRST = "AddThirst"
    REDUCE_THIRST = "ReduceThirst"

    ADD_FOOD = "AddFood"
    REDUCE_FOOD = "ReduceFood"
    ADD_WATER = "AddWater"
    REDUCE_WATER = "ReduceWater"
    ADD_SUPPLIES = "AddSupplies"
    REDUCE_SUPPLIES = "ReduceSupplies"

    INJURE_CHARACTER = "InjureCharacter"
    HEAL_CHARACTER = "HealCharacter"
    KILL_CHARACTER = "KillCharacter"

    INFECT_CHARACTER = "InfectCharacter"
    CURE_CHARACTER = "CureCharacter"


class SicknessType(str, Enum):
    FLU = "Flu"
    FOOD_POISONING = "FoodPoisoning"
    FEVER = "Fever"
    INFECTION = "Infection"
    DYSENTERY = "Dysentery"
    PNEUMONIA = "Pneumonia"
    RADIATION_POISONING = "RadiationPoisoning"
    PLAGUE = "Plague"


class ItemType(str, Enum):
    FOOD = "Food"
    WATER = "Water"
    MEDS = "Meds"
    TOOLS = "Tools"
    JUNK = "Junk"


_ITEM_TYPE_ALIASES = {
    "medicine": ItemType.MEDS,
    "medical": ItemType.MEDS,
    "medication": ItemType.MEDS,
    "med": ItemType.MEDS,
    "tool": ItemType.TOOLS,
    "drink": ItemType.WATER,
}


def normalize_item_type(raw: object) -> ItemType:
    """Map a free-form item category to ItemType; unknown falls back to Junk."""
    if isinstance(raw, ItemType):
        return raw
    key = str(raw or "").strip().lower()
    for member in ItemType:
        if member.value.lower() == key:
            return member
    if key in _ITEM_TYPE_ALIASES:
        return _ITEM_TYPE_ALIASES[key]
    if key:
        logger.debug("unknown item type %r, using Junk", raw)
    return ItemType.JUNK


# ---------------------------------------------------------------------------
# Story events: the shape the generation service is asked to produce
# ---------------------------------------------------------------------------

class Effect(BaseModel):
    """One symbolic state change: type + intensity + optional target.

    `effect_type` stays a plain string so that words outside the vocabulary
    survive parsing and are skipped later by the interpreter.
    An empty target means the effect applies to a shared resource pool.
    """

    model_config = ConfigDict(populate_by_name=True)

    effect_type: str = Field(alias="effectType")
    intensity: int = 5
    target: str = ""

    @field_validator("intensity", mode="before")
    @classmethod
    def _clamp_intensity(cls, v: object) -> int:
        if isinstance(v, str):
            v = float(v.strip())
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError(f"intensity must be a number, got {type(v).__name__}")
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError(f"intensity must be finite, got {v}")
        return int(clamp(round(v), INTENSITY_MIN, INTENSITY_MAX))

    @field_validator("target", mode="before")
    @classmethod
    def _none_target(cls, v: object) -> object:
        return "" if v is None else v

    def __str__(self) -> str:
        if self.target:
            return f"{self.effect_type}:{self.intensity}:{self.target}"
        return f"{self.effect_type}:{self.intensity}"


class Choice(BaseModel):
    """A follow-up the player may pick later; its effects are not auto-applied."""

    text: str
    effects: list[Effect] = Field(default_factory=list)


class StoryEvent(BaseModel):
    title: str
    description: str
    effects: list[Effect] = Field(default_factory=list)
    choices: list[Choice] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Characters and items (owned by external stores, read by the pipeline)
# ---------------------------------------------------------------------------

class Character(BaseModel):
    """A family member in the bunker. All four stats live in [0, 100]."""

    model_config = ConfigDict(validate_assignment=True)

    name: str
    health: float = STAT_MAX
    hunger: float = STAT_MAX
    thirst: float = STAT_MAX
    sanity: float = STAT_MAX
    is_injured: bool = False
    sickness: SicknessType | None = None
    sickness_severity: int = 0

    @field_validator("health", "hunger", "thirst", "sanity", mode="before")
    @classmethod
    def _clamp_stat(cls, v: float) -> float:
        return clamp(float(v))

    @property
    def is_alive(self) -> bool:
        return self.health > 0

    @property
    def is_sick(self) -> bool:
        return self.sickness is not None

    @property
    def is_critical(self) -> bool:
        if not self.is_alive:
            return False
        return min(self.health, self.hunger, self.thirst) < CRITICAL_THRESHOLD

    def modify_health(self, amount: float) -> None:
        self.health = self.health + amount

    def modify_sanity(self, amount: float) -> None:
        self.sanity = self.sanity + amount

    def modify_hunger(self, amount: float) -> None:
        self.hunger = self.hunger + amount

    def modify_thirst(self, amount: float) -> None:
        self.thirst = self.thirst + amount

    def injure(self, damage: float) -> None:
        self.modify_health(-damage)
        self.is_injured = True

    def heal(self, amount: float) -> None:
        self.modify_health(amount)
        self.is_injured = False

    def kill(self) -> None:
        self.health = STAT_MIN

    def infect(self, sickness: SicknessType, severity: int) -> None:
        self.sickness = sickness
        self.sickness_severity = severity

    def cure(self) -> None:
        self.sickness = None
        self.sickness_severity = 0
        self.is_injured = False

    def status_summary(self) -> str:
        """Short comma-separated condition tags used in prompts."""
        if not self.is_alive:
            return "Dead"
        tags: list[str] = []
        if self.is_critical:
            tags.append("Critical")
        if self.is_injured:
            tags.append("Injured")
        if self.sickness is not None:
            tags.append(f"Sick: {self.sickness.value} (severity {self.sickness_severity})")
        return ", ".join(tags) or "Healthy"


class Item(BaseModel):
    id: str
    name: str
    item_type: ItemType = ItemType.JUNK
    description: str = ""

    @field_validator("item_type", mode="before")
    @classmethod
    def _normalize_type(cls, v: object) -> ItemType:
        return normalize_item_type(v)


# ---------------------------------------------------------------------------
# Per-day state
# ---------------------------------------------------------------------------

class Challenge(BaseModel):
    """A prompt presented to the player for one category on one day."""

    category: Category
    title: str
    description: str

    def describe(self, target: str | None = None) -> str:
        """Description with {target} replaced by the character name."""
        if not target:
            return self.description
        return self.description.replace("{target}", target)


class CategorySlot(BaseModel):
    active: bool = False
    challenge: Challenge | None = None
    input: str = ""
    items: list[str] = Field(default_factory=list)


class DailyActionState(BaseModel):
    """Everything the orchestrator knows about the day in flight."""

    day: int
    slots: dict[Category, CategorySlot] = Field(
        default_factory=lambda: {c: CategorySlot() for c in Category}
    )
    family_request_target: str | None = None

    def slot(self, category: Category) -> CategorySlot:
        return self.slots[category]

    def is_active(self, category: Category) -> bool:
        return self.slots[category].active

    def active_categories(self) -> list[Category]:
        return [c for c in Category if self.slots[c].active]

    def challenge_for(self, category: Category) -> Challenge | None:
        return self.slots[category].challenge


class PlayerActionResult(BaseModel):
    """Outcome of one submitted category. Exactly one of event/error is set."""

    model_config = ConfigDict(frozen=True)

    category: Category
    player_input: str
    items_used: tuple[str, ...] = ()
    event: StoryEvent | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _one_outcome(self) -> "PlayerActionResult":
        if (self.event is not None) == bool(self.error):
            raise ValueError("a result carries either an event or an error, not both or neither")
        return self

    @property
    def has_error(self) -> bool:
        return bool(self.error)

    @property
    def succeeded(self) -> bool:
        return self.event is not None and not self.has_error

    def __str__(self) -> str:
        if self.has_error:
            return f"[{self.category.value}] ERROR: {self.error}"
        return f"[{self.category.value}] {self.event.title}"
