import random

import pytest

from bunker_actions.challenges import ChallengePool
from bunker_actions.config import GameConfig
from bunker_actions.models import Character
from bunker_actions.stores import CharacterStore, ResourceStore
from bunker_actions.story_log import StoryLog

ENV_VARS = ("LLM_PROVIDER_URL", "LLM_API_KEY", "LLM_PROVIDER_FORMAT", "LLM_MODEL", "LLM_TIMEOUT", "DATA_DIR")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer LLM_* settings out of every test."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config() -> GameConfig:
    return GameConfig()


@pytest.fixture
def family() -> CharacterStore:
    return CharacterStore([
        Character(name="Father"),
        Character(name="Mother"),
        Character(name="Son", sanity=25),
    ])


@pytest.fixture
def resources() -> ResourceStore:
    return ResourceStore({"Food": 10, "Water": 10, "Supplies": 5})


@pytest.fixture
def challenges() -> ChallengePool:
    return ChallengePool(rng=random.Random(7))


@pytest.fixture
def story_log(tmp_path) -> StoryLog:
    return StoryLog(tmp_path / "data")
