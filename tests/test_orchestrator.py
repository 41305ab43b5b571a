"""Tests for bunker_actions.orchestrator: the per-day fan-out / fan-in cycle.

A StubClient stands in for the generation service. Replies are keyed by
category (read from the user prompt header) and can be held behind a gate
so a test decides the order in which network calls "return".
"""

import asyncio
import json

import pytest

from bunker_actions.challenges import ChallengePool
from bunker_actions.config import GameConfig
from bunker_actions.effects import lerp
from bunker_actions.llm import GenerationError, GenerationReply
from bunker_actions.models import Category, Challenge, Character
from bunker_actions.orchestrator import (
    EMPTY_REPLY_ERROR,
    NO_JSON_ERROR,
    ActionCycleOrchestrator,
    DayPhase,
)
from bunker_actions.stores import CharacterStore, Inventory, ItemCatalog

_HEADERS = {
    "CATEGORY: EXPLORATION ===": Category.EXPLORATION,
    "CATEGORY: DILEMMA ===": Category.DILEMMA,
    "CATEGORY: FAMILYREQUEST ===": Category.FAMILY_REQUEST,
}


class StubClient:
    """Deterministic generation client for tests.

    Provide a dict mapping category → reply text (or an exception to raise).
    hold(category) returns an asyncio.Event that must be set before that
    category's reply is delivered.
    """

    def __init__(self, replies: dict[Category, object]) -> None:
        self.replies = dict(replies)
        self.gates: dict[Category, asyncio.Event] = {}
        self.calls: list[tuple[Category, str, str]] = []

    def hold(self, category: Category) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[category] = gate
        return gate

    async def complete(self, system_prompt: str, user_prompt: str, structured: bool) -> GenerationReply:
        category = next(c for header, c in _HEADERS.items() if header in user_prompt)
        self.calls.append((category, system_prompt, user_prompt))
        gate = self.gates.get(category)
        if gate is not None:
            await gate.wait()
        reply = self.replies[category]
        if isinstance(reply, BaseException):
            raise reply
        return GenerationReply(text=reply, status_code=200)


def event_json(title: str, effects: list[dict] | None = None, choices: list[dict] | None = None) -> str:
    return json.dumps({
        "title": title,
        "description": f"{title} happens.",
        "effects": effects or [],
        "choices": choices or [],
    })


LEAK_REPLY = (
    'Sure!\n```json\n{"title":"Leak","description":"Water sprays.",'
    '"effects":[{"effectType":"ReduceHP","intensity":5,"target":"Mother"}],"choices":[]}\n```'
)


async def until(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


def make_orchestrator(
    family: CharacterStore,
    resources,
    client: StubClient,
    *,
    dilemma: float = 1.0,
    family_request: float = 1.0,
    **kwargs,
) -> ActionCycleOrchestrator:
    config = GameConfig(dilemma_chance=dilemma, family_request_chance=family_request)
    return ActionCycleOrchestrator(
        config, client, family, resources,
        kwargs.pop("challenges", ChallengePool()),
        **kwargs,
    )


@pytest.fixture
def client() -> StubClient:
    return StubClient({
        Category.EXPLORATION: event_json("Found Cache", [{"effectType": "AddFood", "intensity": 10, "target": ""}]),
        Category.DILEMMA: event_json("Hard Choice", [{"effectType": "ReduceSanity", "intensity": 1, "target": "Father"}]),
        Category.FAMILY_REQUEST: event_json("Comforted", [{"effectType": "AddSanity", "intensity": 10, "target": "Son"}]),
    })


@pytest.fixture
def orch(family, resources, client) -> ActionCycleOrchestrator:
    return make_orchestrator(family, resources, client)


# ---------------------------------------------------------------------------
# prepare_day
# ---------------------------------------------------------------------------

class TestPrepareDay:
    def test_exploration_always_active(self, family, resources, client) -> None:
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        state = orch.prepare_day(1)
        assert state.active_categories() == [Category.EXPLORATION]
        assert state.family_request_target is None

    def test_all_active_when_rolls_succeed(self, orch) -> None:
        state = orch.prepare_day(4)
        assert state.active_categories() == list(Category)
        assert state.day == 4

    def test_challenge_drawn_per_active_category(self, orch) -> None:
        state = orch.prepare_day(1)
        for category in Category:
            challenge = state.challenge_for(category)
            assert challenge is not None
            assert challenge.category is category

    def test_family_request_needs_living_needy_character(self, resources, client) -> None:
        healthy = CharacterStore([Character(name="Father"), Character(name="Mother")])
        orch = make_orchestrator(healthy, resources, client, family_request=1.0)
        for day in range(1, 6):
            assert not orch.prepare_day(day).is_active(Category.FAMILY_REQUEST)

    def test_dead_characters_are_not_needy(self, resources, client) -> None:
        store = CharacterStore([Character(name="Father"), Character(name="Ghost", health=0)])
        orch = make_orchestrator(store, resources, client)
        assert not orch.prepare_day(1).is_active(Category.FAMILY_REQUEST)

    @pytest.mark.parametrize("needy", [
        Character(name="Son", sanity=29),
        Character(name="Son", hunger=10),
        Character(name="Son", is_injured=True),
        Character(name="Son", sickness="Flu", sickness_severity=1),
    ])
    def test_target_is_the_needy_member(self, resources, client, needy) -> None:
        store = CharacterStore([Character(name="Father"), Character(name="Mother"), needy])
        orch = make_orchestrator(store, resources, client)
        state = orch.prepare_day(1)
        assert state.is_active(Category.FAMILY_REQUEST)
        assert state.family_request_target == "Son"

    def test_force_all_without_needy_picks_living_target(self, resources, client) -> None:
        store = CharacterStore([Character(name="Father")])
        orch = make_orchestrator(store, resources, client, dilemma=0.0, family_request=0.0)
        state = orch.prepare_day(2, force_all=True)
        assert state.active_categories() == list(Category)
        assert state.family_request_target == "Father"

    def test_day_ready_emitted(self, orch) -> None:
        seen = []
        orch.day_ready.subscribe(seen.append)
        state = orch.prepare_day(3)
        assert seen == [state]

    def test_phase_prepared(self, orch) -> None:
        assert orch.phase is DayPhase.NOT_PREPARED
        orch.prepare_day(1)
        assert orch.phase is DayPhase.PREPARED

    def test_invalid_day(self, orch) -> None:
        with pytest.raises(ValueError):
            orch.prepare_day(0)

    async def test_cannot_prepare_while_pending(self, orch, client) -> None:
        client.hold(Category.EXPLORATION)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        with pytest.raises(RuntimeError, match="pending"):
            orch.prepare_day(2)
        client.gates[Category.EXPLORATION].set()
        await orch.wait_until_resolved()

    async def test_new_day_resets_results(self, orch) -> None:
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()
        orch.prepare_day(2)
        assert orch.results == {}
        assert orch.submit(Category.EXPLORATION, "search again")
        await orch.wait_until_resolved()


# ---------------------------------------------------------------------------
# Caller misuse
# ---------------------------------------------------------------------------

class TestRejectedSubmissions:
    def test_before_prepare(self, orch, client) -> None:
        assert orch.submit(Category.EXPLORATION, "hello") is False
        assert client.calls == []

    def test_inactive_category(self, family, resources, client) -> None:
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        assert orch.submit(Category.DILEMMA, "share the water") is False
        assert orch.pending == 0

    async def test_empty_input_rejected(self, orch, client) -> None:
        orch.prepare_day(1)
        assert orch.submit(Category.DILEMMA, "", []) is False
        assert orch.submit(Category.DILEMMA, "   ") is False
        await asyncio.sleep(0)
        assert orch.pending == 0
        assert client.calls == []
        assert orch.state.slot(Category.DILEMMA).input == ""

    async def test_duplicate_rejected(self, orch, client) -> None:
        orch.prepare_day(1)
        assert orch.submit(Category.EXPLORATION, "search")
        assert orch.submit(Category.EXPLORATION, "search again") is False
        assert orch.pending == 1
        await orch.wait_until_resolved()
        assert len(client.calls) == 1

    async def test_failed_category_not_resubmittable(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: ""})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()
        assert orch.results[Category.EXPLORATION].has_error
        assert orch.submit(Category.EXPLORATION, "try again") is False

    def test_submit_needs_running_loop(self, orch) -> None:
        orch.prepare_day(1)
        with pytest.raises(RuntimeError):
            orch.submit(Category.EXPLORATION, "search")
        assert orch.pending == 0
        assert orch.phase is DayPhase.PREPARED


# ---------------------------------------------------------------------------
# Fan-out / fan-in
# ---------------------------------------------------------------------------

class TestFanIn:
    async def test_out_of_order_completion_waits_for_all(self, family, resources, client) -> None:
        orch = make_orchestrator(family, resources, client, dilemma=1.0, family_request=0.0)
        resolved_order: list[Category] = []
        all_done: list[dict] = []
        orch.category_resolved.subscribe(lambda r: resolved_order.append(r.category))
        orch.all_resolved.subscribe(all_done.append)

        exploration_gate = client.hold(Category.EXPLORATION)
        state = orch.prepare_day(10)
        assert state.active_categories() == [Category.EXPLORATION, Category.DILEMMA]

        assert orch.submit(Category.EXPLORATION, "pry the door")
        assert orch.submit(Category.DILEMMA, "share equally")
        assert orch.pending == 2
        assert orch.phase is DayPhase.PENDING

        await until(lambda: Category.DILEMMA in orch.results)
        assert orch.pending == 1
        assert all_done == []
        assert orch.is_processing

        exploration_gate.set()
        results = await orch.wait_until_resolved()

        assert resolved_order == [Category.DILEMMA, Category.EXPLORATION]
        assert len(all_done) == 1
        assert set(all_done[0]) == {Category.EXPLORATION, Category.DILEMMA}
        assert set(results) == {Category.EXPLORATION, Category.DILEMMA}
        assert orch.pending == 0
        assert orch.phase is DayPhase.ALL_RESOLVED

    @pytest.mark.parametrize("release_order", [
        [Category.EXPLORATION, Category.DILEMMA, Category.FAMILY_REQUEST],
        [Category.FAMILY_REQUEST, Category.DILEMMA, Category.EXPLORATION],
        [Category.DILEMMA, Category.FAMILY_REQUEST, Category.EXPLORATION],
    ])
    async def test_all_resolved_fires_once_after_n_results(self, orch, client, release_order) -> None:
        counts_at_fire: list[int] = []
        orch.all_resolved.subscribe(lambda results: counts_at_fire.append(len(results)))
        gates = {c: client.hold(c) for c in Category}

        orch.prepare_day(5)
        for category in Category:
            assert orch.submit(category, f"answer for {category.value}")

        for category in release_order:
            gates[category].set()
            await until(lambda: category in orch.results)
        await orch.wait_until_resolved()

        assert counts_at_fire == [3]

    async def test_failure_does_not_block_siblings(self, family, resources) -> None:
        client = StubClient({
            Category.EXPLORATION: GenerationError("Generation backend timed out after 60.0s"),
            Category.DILEMMA: event_json("Fine"),
        })
        orch = make_orchestrator(family, resources, client, dilemma=1.0, family_request=0.0)
        fired = []
        orch.all_resolved.subscribe(fired.append)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "a")
        orch.submit(Category.DILEMMA, "b")
        results = await orch.wait_until_resolved()

        assert results[Category.EXPLORATION].error == "Generation backend timed out after 60.0s"
        assert results[Category.DILEMMA].succeeded
        assert len(fired) == 1

    async def test_wait_with_nothing_pending(self, orch) -> None:
        orch.prepare_day(1)
        assert await orch.wait_until_resolved() == {}

    async def test_submit_all_uses_saved_drafts(self, orch, client) -> None:
        orch.prepare_day(1)
        assert orch.save_input(Category.EXPLORATION, "search the vents", ["crowbar"])
        assert orch.save_input(Category.DILEMMA, "   ")
        submitted = orch.submit_all()
        assert submitted == [Category.EXPLORATION]
        results = await orch.wait_until_resolved()
        assert results[Category.EXPLORATION].items_used == ("crowbar",)
        assert [c for c, _, _ in client.calls] == [Category.EXPLORATION]

    async def test_save_input_rejected_after_submit(self, orch) -> None:
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "go")
        assert orch.save_input(Category.EXPLORATION, "changed my mind") is False
        await orch.wait_until_resolved()


# ---------------------------------------------------------------------------
# Reply handling
# ---------------------------------------------------------------------------

class TestReplies:
    async def test_fenced_reply_applies_effects(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: LEAK_REPLY})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "check the pipes")
        results = await orch.wait_until_resolved()

        assert results[Category.EXPLORATION].event.title == "Leak"
        assert family.find("Mother").health == pytest.approx(100 - lerp(5, 50, 4 / 9))

    async def test_empty_reply(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: ""})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        fired = []
        orch.all_resolved.subscribe(fired.append)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()

        assert results[Category.EXPLORATION].error == EMPTY_REPLY_ERROR
        assert orch.pending == 0
        assert len(fired) == 1

    async def test_no_json(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: "I cannot help with that."})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()
        assert results[Category.EXPLORATION].error == NO_JSON_ERROR

    async def test_parse_failure(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: '{"title": "No description"}'})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()
        assert results[Category.EXPLORATION].error.startswith("Failed to parse story event: ")

    async def test_unexpected_exception_becomes_error(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: KeyError("boom")})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        fired = []
        orch.all_resolved.subscribe(fired.append)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()
        assert results[Category.EXPLORATION].error.startswith("Unexpected error")
        assert len(fired) == 1

    async def test_unknown_effect_does_not_fail_submission(self, family, resources) -> None:
        reply = event_json("Odd", [
            {"effectType": "Frobnicate", "intensity": 5, "target": "Father"},
            {"effectType": "AddWater", "intensity": 10, "target": ""},
        ])
        client = StubClient({Category.EXPLORATION: reply})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()
        assert results[Category.EXPLORATION].succeeded
        assert resources.get("Water") == 20

    async def test_failed_result_applies_nothing(self, family, resources) -> None:
        client = StubClient({Category.EXPLORATION: "nope"})
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0)
        before = resources.snapshot()
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()
        assert resources.snapshot() == before

    async def test_family_request_prompt_names_target(self, orch, client) -> None:
        state = orch.prepare_day(1)
        assert state.family_request_target == "Son"
        orch.submit(Category.FAMILY_REQUEST, "sit with them")
        await orch.wait_until_resolved()
        _, system, user = client.calls[0]
        assert "TARGET FAMILY MEMBER: Son" in user
        assert 'PLAYER\'S RESPONSE: "sit with them"' in user
        assert "CATEGORY: FAMILY REQUEST" in system


# ---------------------------------------------------------------------------
# Collaborators: story log and inventory
# ---------------------------------------------------------------------------

class TestCollaborators:
    async def test_success_logged_and_items_consumed(self, family, resources, client, story_log) -> None:
        inventory = Inventory({"crowbar": 2, "antibiotics": 1})
        orch = make_orchestrator(
            family, resources, client, dilemma=0.0, family_request=0.0,
            story_log=story_log, inventory=inventory, items=ItemCatalog(),
        )
        orch.prepare_day(7)
        orch.submit(Category.EXPLORATION, "pry it open", ["crowbar", "antibiotics", "missing"])
        await orch.wait_until_resolved()

        entries = story_log.events_for(7)
        assert [e.title for e in entries] == ["Found Cache"]
        assert entries[0].player_action == "pry it open"
        assert entries[0].category == "Exploration"
        assert inventory.snapshot() == {"crowbar": 1}

    async def test_failure_not_logged_items_kept(self, family, resources, story_log) -> None:
        client = StubClient({Category.EXPLORATION: ""})
        inventory = Inventory({"crowbar": 1})
        orch = make_orchestrator(
            family, resources, client, dilemma=0.0, family_request=0.0,
            story_log=story_log, inventory=inventory,
        )
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "pry", ["crowbar"])
        await orch.wait_until_resolved()
        assert story_log.days() == []
        assert inventory.count("crowbar") == 1

    async def test_recent_titles_reach_next_prompt(self, family, resources, client, story_log) -> None:
        orch = make_orchestrator(
            family, resources, client, dilemma=0.0, family_request=0.0, story_log=story_log,
        )
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()
        orch.prepare_day(2)
        orch.submit(Category.EXPLORATION, "search more")
        await orch.wait_until_resolved()
        _, system, _ = client.calls[1]
        assert "- Found Cache" in system

    async def test_challenges_not_repeated_across_days(self, family, resources, client) -> None:
        pool = ChallengePool([
            Challenge(category=Category.EXPLORATION, title="A", description="a"),
            Challenge(category=Category.EXPLORATION, title="B", description="b"),
        ])
        orch = make_orchestrator(family, resources, client, dilemma=0.0, family_request=0.0, challenges=pool)
        titles = {orch.prepare_day(d).challenge_for(Category.EXPLORATION).title for d in (1, 2)}
        assert titles == {"A", "B"}


# ---------------------------------------------------------------------------
# Follow-up choices
# ---------------------------------------------------------------------------

class TestChoices:
    @pytest.fixture
    def choice_client(self) -> StubClient:
        return StubClient({Category.EXPLORATION: event_json("Fork", choices=[
            {"text": "Take the food", "effects": [{"effectType": "AddFood", "intensity": 1, "target": ""}]},
            {"text": "Leave it", "effects": [{"effectType": "ReduceSanity", "intensity": 10, "target": "Father"}]},
        ])})

    async def test_choice_applied_once(self, family, resources, choice_client) -> None:
        orch = make_orchestrator(family, resources, choice_client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "look")
        await orch.wait_until_resolved()
        assert resources.get("Food") == 10

        choice = orch.resolve_choice(Category.EXPLORATION, 0)
        assert choice.text == "Take the food"
        assert resources.get("Food") == 11
        assert orch.resolve_choice(Category.EXPLORATION, 1) is None
        assert family.find("Father").sanity == 100

    async def test_out_of_range(self, family, resources, choice_client) -> None:
        orch = make_orchestrator(family, resources, choice_client, dilemma=0.0, family_request=0.0)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "look")
        await orch.wait_until_resolved()
        assert orch.resolve_choice(Category.EXPLORATION, 5) is None
        assert orch.resolve_choice(Category.EXPLORATION, -1) is None
        assert orch.resolve_choice(Category.EXPLORATION, 1).text == "Leave it"

    def test_no_result(self, orch) -> None:
        orch.prepare_day(1)
        assert orch.resolve_choice(Category.DILEMMA, 0) is None


# ---------------------------------------------------------------------------
# Day closure
# ---------------------------------------------------------------------------

class TestDayClosure:
    async def test_sequential_submission_rejected_after_all_resolved(self, family, resources, client) -> None:
        orch = make_orchestrator(family, resources, client, dilemma=1.0, family_request=0.0)
        fired: list[list[str]] = []
        orch.all_resolved.subscribe(lambda results: fired.append(sorted(c.value for c in results)))

        orch.prepare_day(1)
        assert orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()
        assert orch.phase is DayPhase.ALL_RESOLVED

        assert orch.submit(Category.DILEMMA, "share") is False
        assert orch.save_input(Category.DILEMMA, "share") is False
        assert orch.submit_all() == []
        await orch.wait_until_resolved()

        assert fired == [["Exploration"]]
        assert orch.pending == 0
        assert [c for c, _, _ in client.calls] == [Category.EXPLORATION]
        assert Category.DILEMMA not in orch.results

    async def test_next_day_reopens_submissions(self, family, resources, client) -> None:
        orch = make_orchestrator(family, resources, client, dilemma=1.0, family_request=0.0)
        fired = []
        orch.all_resolved.subscribe(fired.append)
        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        await orch.wait_until_resolved()

        orch.prepare_day(2)
        assert orch.phase is DayPhase.PREPARED
        assert orch.submit(Category.DILEMMA, "share")
        await orch.wait_until_resolved()
        assert len(fired) == 2


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------

class BrokenInventory:
    def remove(self, item_id: str, quantity: int = 1) -> bool:
        raise RuntimeError("inventory offline")


class TestCollaboratorFailures:
    async def test_corrupt_story_log_still_resolves(self, family, resources, client, story_log, tmp_path) -> None:
        (tmp_path / "data" / "story_log.json").write_text("{not json")
        config = GameConfig(dilemma_chance=0.0, family_request_chance=0.0, recent_titles_in_prompt=0)
        orch = ActionCycleOrchestrator(
            config, client, family, resources, ChallengePool(), story_log=story_log,
        )
        resolved, fired = [], []
        orch.category_resolved.subscribe(resolved.append)
        orch.all_resolved.subscribe(fired.append)

        orch.prepare_day(1)
        orch.submit(Category.EXPLORATION, "search")
        results = await orch.wait_until_resolved()

        assert results[Category.EXPLORATION].succeeded
        assert resources.get("Food") == 20
        assert len(resolved) == 1
        assert len(fired) == 1
        assert orch.phase is DayPhase.ALL_RESOLVED

    async def test_failing_inventory_does_not_block_log(self, family, resources, client, story_log) -> None:
        orch = make_orchestrator(
            family, resources, client, dilemma=0.0, family_request=0.0,
            story_log=story_log, inventory=BrokenInventory(),
        )
        fired = []
        orch.all_resolved.subscribe(fired.append)
        orch.prepare_day(3)
        orch.submit(Category.EXPLORATION, "pry", ["crowbar"])
        await orch.wait_until_resolved()

        assert [e.title for e in story_log.events_for(3)] == ["Found Cache"]
        assert len(fired) == 1
