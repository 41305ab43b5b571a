"""HTTP surface tests: drive one day through the FastAPI app."""

import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from bunker_actions.config import GameConfig
from bunker_actions.llm import SampleClient


@pytest.fixture
def sample() -> SampleClient:
    return SampleClient()


@pytest.fixture
def api(tmp_path, sample):
    config = GameConfig(dilemma_chance=1.0, family_request_chance=0.0)
    app = create_app(tmp_path / "data", config=config, client=sample)
    # Entering the context keeps one event loop alive across requests
    with TestClient(app) as client:
        yield client


# -----------------------------------------------------------------------------
# Day preparation
# -----------------------------------------------------------------------------

class TestDay:
    def test_health(self, api) -> None:
        assert api.get("/api/health").json() == {"status": "ok"}

    def test_not_prepared(self, api) -> None:
        body = api.get("/api/day").json()
        assert body == {"phase": "NotPrepared", "pending": 0, "state": None}

    def test_prepare(self, api) -> None:
        resp = api.post("/api/day/3/prepare")
        assert resp.status_code == 200
        state = resp.json()
        assert state["day"] == 3
        assert state["slots"]["Exploration"]["active"] is True
        assert state["slots"]["Dilemma"]["active"] is True
        assert state["slots"]["FamilyRequest"]["active"] is False
        assert state["slots"]["Exploration"]["challenge"]["category"] == "Exploration"
        assert api.get("/api/day").json()["phase"] == "Prepared"

    def test_force_all(self, api) -> None:
        state = api.post("/api/day/1/prepare", params={"force_all": "true"}).json()
        assert state["slots"]["FamilyRequest"]["active"] is True
        assert state["family_request_target"] in {"Father", "Mother", "Son", "Daughter"}

    @pytest.mark.parametrize("day", [0, 31])
    def test_day_out_of_range(self, api, day) -> None:
        assert api.post(f"/api/day/{day}/prepare").status_code == 404


# -----------------------------------------------------------------------------
# Actions and results
# -----------------------------------------------------------------------------

class TestActions:
    def test_submit_before_prepare(self, api) -> None:
        resp = api.post("/api/actions/exploration", json={"text": "look around"})
        assert resp.status_code == 409

    def test_unknown_category(self, api) -> None:
        api.post("/api/day/1/prepare")
        assert api.post("/api/actions/stealth", json={"text": "x"}).status_code == 404

    def test_inactive_category(self, api) -> None:
        api.post("/api/day/1/prepare")
        resp = api.post("/api/actions/family-request", json={"text": "hug"})
        assert resp.status_code == 409

    def test_blank_input(self, api, sample) -> None:
        api.post("/api/day/1/prepare")
        assert api.post("/api/actions/dilemma", json={"text": "  "}).status_code == 409
        assert sample.calls == []

    def test_submit_and_wait(self, api) -> None:
        api.post("/api/day/1/prepare")
        resp = api.post(
            "/api/actions/Exploration",
            params={"wait": "true"},
            json={"text": "search the vents", "items": ["crowbar"]},
        )
        assert resp.status_code == 202
        result = resp.json()
        assert result["category"] == "Exploration"
        assert result["error"] is None
        assert result["event"]["title"] == "Quiet Day"
        assert result["event"]["effects"][0]["effectType"] == "ReduceFood"
        assert result["items_used"] == ["crowbar"]

        assert api.get("/api/resources").json() == {"Food": 8, "Water": 8, "Supplies": 5}
        assert api.get("/api/day").json()["phase"] == "AllResolved"

    def test_duplicate_submission(self, api) -> None:
        api.post("/api/day/1/prepare")
        api.post("/api/actions/exploration", params={"wait": "true"}, json={"text": "a"})
        resp = api.post("/api/actions/exploration", json={"text": "b"})
        assert resp.status_code == 409

    def test_drafts_then_submit_all(self, api, sample) -> None:
        api.post("/api/day/2/prepare")
        assert api.put("/api/actions/exploration", json={"text": "check the hatch"}).status_code == 200
        assert api.put("/api/actions/dilemma", json={"text": "share the water"}).status_code == 200

        body = api.post("/api/actions", params={"wait": "true"}).json()
        assert body["submitted"] == ["Exploration", "Dilemma"]
        assert set(body["results"]) == {"Exploration", "Dilemma"}
        assert len(sample.calls) == 2

        results = api.get("/api/results").json()
        assert results["Dilemma"]["player_input"] == "share the water"

    def test_day_closed_after_all_resolved(self, api, sample) -> None:
        api.post("/api/day/1/prepare")
        api.post("/api/actions/exploration", params={"wait": "true"}, json={"text": "a"})
        assert api.get("/api/day").json()["phase"] == "AllResolved"

        assert api.post("/api/actions/dilemma", json={"text": "share"}).status_code == 409
        assert api.put("/api/actions/dilemma", json={"text": "share"}).status_code == 409
        assert len(sample.calls) == 1

    def test_prepare_after_resolution(self, api) -> None:
        api.post("/api/day/1/prepare")
        api.post("/api/actions/exploration", params={"wait": "true"}, json={"text": "a"})
        assert api.post("/api/day/2/prepare").status_code == 200
        assert api.get("/api/results").json() == {}


class TestChoices:
    def test_take_choice_once(self, api) -> None:
        api.post("/api/day/1/prepare")
        api.post("/api/actions/exploration", params={"wait": "true"}, json={"text": "a"})

        resp = api.post("/api/results/exploration/choices/0")
        assert resp.status_code == 200
        assert resp.json()["text"] == "Take stock of the shelves"
        assert api.get("/api/resources").json()["Supplies"] == 6

        assert api.post("/api/results/exploration/choices/1").status_code == 409

    def test_choice_without_result(self, api) -> None:
        api.post("/api/day/1/prepare")
        assert api.post("/api/results/dilemma/choices/0").status_code == 409


class TestWorld:
    def test_characters(self, api) -> None:
        chars = api.get("/api/characters").json()
        assert [c["name"] for c in chars] == ["Father", "Mother", "Son", "Daughter"]
        assert chars[0]["status"] == "Healthy"
        assert chars[0]["health"] == 100.0
