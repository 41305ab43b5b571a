"""Daily action cycle: one day of player actions, fanned out and joined.

Day flow:
  1. prepare_day()   roll which categories are active, draw a challenge for
                     each, pick the FamilyRequest target, emit day_ready.
  2. submit()        per category: validate, bump the pending counter and
                     start an asyncio task. The task composes the prompt,
                     calls the generation client, extracts and parses the
                     reply and hands a PlayerActionResult to _handle_result.
  3. _handle_result  (serialized by a lock) decrement pending, record the
                     result, apply immediate effects, log the event, consume
                     items, emit category_resolved. When pending reaches
                     zero, emit all_resolved and release wait_until_resolved().

all_resolved fires once per day. After it fires the day is closed: further
submit() and save_input() calls are rejected until the next prepare_day().
Submit every category you want played before awaiting the first result,
or use save_input() plus submit_all().

Categories are independent: a failure in one becomes that category's
error result and never blocks the others. Results are write-once; a
category that failed stays failed for the rest of the day.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from enum import Enum

from bunker_actions.challenges import ChallengePool
from bunker_actions.config import GameConfig
from bunker_actions.effects import EffectInterpreter
from bunker_actions.extraction import extract_json
from bunker_actions.llm import GenerationClient, GenerationError
from bunker_actions.models import (
    Category,
    Challenge,
    Character,
    Choice,
    DailyActionState,
    PlayerActionResult,
)
from bunker_actions.parsing import EventParseError, parse_story_event
from bunker_actions.prompts import PromptComposer
from bunker_actions.signals import Signal
from bunker_actions.stores import CharacterStore, Inventory, ItemCatalog, ResourceStore
from bunker_actions.story_log import StoryLog

logger = logging.getLogger(__name__)

EMPTY_REPLY_ERROR = "Empty response from generation service."
NO_JSON_ERROR = "Could not extract JSON from response."
PARSE_ERROR_PREFIX = "Failed to parse story event"


class DayPhase(str, Enum):
    NOT_PREPARED = "NotPrepared"
    PREPARED = "Prepared"
    PENDING = "Pending"
    ALL_RESOLVED = "AllResolved"


class ActionCycleOrchestrator:
    """Runs the per-day submit/resolve cycle against injected collaborators.

    Subscribe to the signals before calling prepare_day():

        orch.category_resolved.subscribe(show_result)
        orch.all_resolved.subscribe(advance_day)
    """

    def __init__(
        self,
        config: GameConfig,
        client: GenerationClient,
        characters: CharacterStore,
        resources: ResourceStore,
        challenges: ChallengePool,
        *,
        story_log: StoryLog | None = None,
        inventory: Inventory | None = None,
        items: ItemCatalog | None = None,
        composer: PromptComposer | None = None,
        interpreter: EffectInterpreter | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._characters = characters
        self._resources = resources
        self._challenges = challenges
        self._story_log = story_log
        self._inventory = inventory
        self._composer = composer or PromptComposer(config, characters, items=items, story_log=story_log)
        self._interpreter = interpreter or EffectInterpreter(characters, resources, config.magnitudes)
        self._rng = rng or random.Random()

        self.day_ready: Signal[DailyActionState] = Signal("day_ready")
        self.category_resolved: Signal[PlayerActionResult] = Signal("category_resolved")
        self.all_resolved: Signal[dict[Category, PlayerActionResult]] = Signal("all_resolved")

        self._state: DailyActionState | None = None
        self._results: dict[Category, PlayerActionResult] = {}
        self._submitted: set[Category] = set()
        self._chosen: set[Category] = set()
        self._pending = 0
        self._day_closed = False
        self._lock = asyncio.Lock()
        self._resolved = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> DailyActionState | None:
        return self._state

    @property
    def results(self) -> dict[Category, PlayerActionResult]:
        return dict(self._results)

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def is_processing(self) -> bool:
        return self._pending > 0

    @property
    def phase(self) -> DayPhase:
        if self._state is None:
            return DayPhase.NOT_PREPARED
        if self._day_closed:
            return DayPhase.ALL_RESOLVED
        if self._pending > 0:
            return DayPhase.PENDING
        return DayPhase.PREPARED

    # ------------------------------------------------------------------
    # Day preparation
    # ------------------------------------------------------------------

    def is_needy(self, character: Character) -> bool:
        """Alive and sick, injured, critical or low on sanity."""
        if not character.is_alive:
            return False
        return (
            character.is_sick
            or character.is_injured
            or character.is_critical
            or character.sanity < self._config.needy_sanity_threshold
        )

    def prepare_day(self, day: int, *, force_all: bool = False) -> DailyActionState:
        """Start a new day. Raises RuntimeError while submissions are in flight."""
        if self._pending > 0:
            raise RuntimeError(f"Cannot prepare day {day}: {self._pending} submission(s) still pending")
        if day < 1:
            raise ValueError(f"Day must be >= 1, got {day}")

        self._results = {}
        self._submitted = set()
        self._chosen = set()
        self._day_closed = False
        self._resolved = asyncio.Event()

        alive = self._characters.all_alive()
        needy = [c for c in alive if self.is_needy(c)]

        state = DailyActionState(day=day)
        state.slot(Category.EXPLORATION).active = True
        if force_all:
            state.slot(Category.DILEMMA).active = True
            state.slot(Category.FAMILY_REQUEST).active = bool(alive)
        else:
            state.slot(Category.DILEMMA).active = self._rng.random() < self._config.dilemma_chance
            family_roll = self._rng.random() < self._config.family_request_chance
            state.slot(Category.FAMILY_REQUEST).active = family_roll and bool(needy)

        for category in state.active_categories():
            state.slot(category).challenge = self._challenges.draw(category)

        if state.is_active(Category.FAMILY_REQUEST):
            pick_from = needy or alive
            state.family_request_target = self._rng.choice(pick_from).name

        self._state = state
        logger.info(
            "Day %d actions prepared: %s",
            day, ", ".join(c.value for c in state.active_categories()),
        )
        for category in state.active_categories():
            challenge = state.challenge_for(category)
            logger.debug("  %s: %s", category.value, challenge.title if challenge else "(no challenge)")
        if state.family_request_target:
            logger.debug("  FamilyRequest target: %s", state.family_request_target)

        self.day_ready.emit(state)
        return state

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _check_open(self, category: Category) -> bool:
        if self._state is None:
            logger.warning("No day prepared; call prepare_day() first")
            return False
        if self._day_closed:
            logger.warning("Day %d already resolved; no further submissions", self._state.day)
            return False
        if not self._state.is_active(category):
            logger.warning("Category %s is not active today", category.value)
            return False
        if category in self._submitted:
            logger.warning("Category %s already submitted", category.value)
            return False
        return True

    def save_input(self, category: Category, text: str, items: Sequence[str] | None = None) -> bool:
        """Store a draft for a category without submitting it."""
        if not self._check_open(category):
            return False
        slot = self._state.slot(category)
        slot.input = text
        slot.items = list(items or [])
        return True

    def submit(self, category: Category, text: str, items: Sequence[str] | None = None) -> bool:
        """Send one category's input to the generation service.

        Returns False (and changes nothing) when no day is prepared or the
        day has already resolved, the category is inactive or already
        submitted, or the input is blank.
        Must be called with an event loop running.
        """
        if not self._check_open(category):
            return False
        if not text or not text.strip():
            logger.warning("Empty input for %s rejected", category.value)
            return False
        loop = asyncio.get_running_loop()

        state = self._state
        slot = state.slot(category)
        slot.input = text
        slot.items = list(items or [])
        self._submitted.add(category)
        self._pending += 1
        self._resolved.clear()

        target = state.family_request_target if category is Category.FAMILY_REQUEST else None
        logger.info("Submitting %s: %r with %d item(s)", category.value, text, len(slot.items))

        task = loop.create_task(
            self._run(category, text, tuple(slot.items), slot.challenge, state.day, target),
            name=f"day{state.day}-{category.value}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def submit_all(self) -> list[Category]:
        """Submit every active category that has a saved, non-blank draft."""
        if self._state is None:
            logger.warning("No day prepared; call prepare_day() first")
            return []
        submitted: list[Category] = []
        for category in self._state.active_categories():
            if category in self._submitted:
                continue
            slot = self._state.slot(category)
            if not slot.input.strip():
                continue
            if self.submit(category, slot.input, slot.items):
                submitted.append(category)
        return submitted

    async def wait_until_resolved(self) -> dict[Category, PlayerActionResult]:
        """Wait until every accepted submission has a result; return the results."""
        if self._pending > 0:
            await self._resolved.wait()
        return dict(self._results)

    # ------------------------------------------------------------------
    # Generation round trip
    # ------------------------------------------------------------------

    async def _run(
        self,
        category: Category,
        text: str,
        items: tuple[str, ...],
        challenge: Challenge | None,
        day: int,
        target: str | None,
    ) -> None:
        try:
            result = await self._generate(category, text, items, challenge, day, target)
        except Exception as e:
            logger.exception("Unexpected failure while processing %s", category.value)
            result = PlayerActionResult(
                category=category, player_input=text, items_used=items,
                error=f"Unexpected error: {e}",
            )
        await self._handle_result(result)

    async def _generate(
        self,
        category: Category,
        text: str,
        items: tuple[str, ...],
        challenge: Challenge | None,
        day: int,
        target: str | None,
    ) -> PlayerActionResult:
        def failed(message: str) -> PlayerActionResult:
            logger.error("[%s] %s", category.value, message)
            return PlayerActionResult(category=category, player_input=text, items_used=items, error=message)

        prompt = self._composer.compose(
            category, day=day, challenge=challenge,
            player_input=text, items=items, target=target,
        )

        try:
            reply = await self._client.complete(
                prompt.system, prompt.user, self._config.connection.structured_mode,
            )
        except GenerationError as e:
            return failed(str(e))

        if not reply.text or not reply.text.strip():
            return failed(EMPTY_REPLY_ERROR)
        logger.debug("[%s] raw reply (HTTP %d):\n%s", category.value, reply.status_code, reply.text)

        json_text = extract_json(reply.text)
        if json_text is None:
            return failed(NO_JSON_ERROR)

        try:
            event = parse_story_event(json_text)
        except EventParseError as e:
            return failed(f"{PARSE_ERROR_PREFIX}: {e}")

        logger.info("[%s] %r with %d effect(s)", category.value, event.title, len(event.effects))
        return PlayerActionResult(category=category, player_input=text, items_used=items, event=event)

    # ------------------------------------------------------------------
    # Result handling
    # ------------------------------------------------------------------

    async def _handle_result(self, result: PlayerActionResult) -> None:
        async with self._lock:
            if result.category in self._results:
                logger.warning("Duplicate result for %s ignored", result.category.value)
                return

            self._pending -= 1
            self._results[result.category] = result

            try:
                if result.succeeded:
                    self._apply_outcome(result)
            finally:
                self.category_resolved.emit(result)
                if self._pending == 0:
                    logger.info(
                        "All actions complete for day %d (%d result(s))",
                        self._state.day, len(self._results),
                    )
                    self._day_closed = True
                    self._resolved.set()
                    self.all_resolved.emit(dict(self._results))

    def _apply_outcome(self, result: PlayerActionResult) -> None:
        """Push a successful event into the collaborators.

        Each collaborator is isolated: one failing never blocks the others
        or the resolution signals.
        """
        event = result.event
        category = result.category.value
        try:
            applied = self._interpreter.apply(event.effects)
            logger.debug("[%s] applied %d/%d effect(s)", category, applied, len(event.effects))
        except Exception:
            logger.exception("Could not apply effects for %s", category)

        if self._story_log is not None:
            try:
                self._story_log.append(self._state.day, result.player_input, event, category)
            except Exception:
                logger.exception("Could not write story log entry for %s", category)

        try:
            self._consume_items(result.items_used)
        except Exception:
            logger.exception("Could not consume items for %s", category)

    def _consume_items(self, item_ids: Sequence[str]) -> None:
        if self._inventory is None:
            return
        for item_id in item_ids:
            if self._inventory.remove(item_id, 1):
                logger.debug("Consumed item %s", item_id)

    # ------------------------------------------------------------------
    # Follow-up choices
    # ------------------------------------------------------------------

    def resolve_choice(self, category: Category, index: int) -> Choice | None:
        """Apply the effects of one follow-up choice. One choice per category."""
        result = self._results.get(category)
        if result is None or not result.succeeded:
            logger.warning("No successful result for %s to choose from", category.value)
            return None
        if category in self._chosen:
            logger.warning("A choice for %s was already taken", category.value)
            return None
        choices = result.event.choices
        if not 0 <= index < len(choices):
            logger.warning("Choice %d out of range for %s (%d choices)", index, category.value, len(choices))
            return None

        choice = choices[index]
        self._chosen.add(category)
        self._interpreter.apply(choice.effects)
        logger.info("[%s] choice %d taken: %r", category.value, index, choice.text)
        return choice
