import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.routes import router
from bunker_actions.challenges import ChallengePool
from bunker_actions.config import GameConfig, load_config
from bunker_actions.llm import GenerationClient, HttpGenerationClient, SampleClient
from bunker_actions.models import Character, Item, ItemType
from bunker_actions.orchestrator import ActionCycleOrchestrator
from bunker_actions.stores import CharacterStore, Inventory, ItemCatalog, ResourceStore
from bunker_actions.story_log import StoryLog

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

DEFAULT_FAMILY = ["Father", "Mother", "Son", "Daughter"]

DEFAULT_ITEMS = [
    Item(id="crowbar", name="Crowbar", item_type=ItemType.TOOLS, description="Heavy iron pry bar."),
    Item(id="antibiotics", name="Antibiotics", item_type=ItemType.MEDS, description="A strip of pills."),
    Item(id="canned-beans", name="Canned Beans", item_type=ItemType.FOOD, description="Dented but sealed."),
    Item(id="water-bottle", name="Water Bottle", item_type=ItemType.WATER, description="One litre."),
]


def _default_client(config: GameConfig) -> GenerationClient:
    conn = config.connection
    if conn.api_key or conn.provider_format == "koboldcpp":
        return HttpGenerationClient.from_config(conn)
    logger.warning("No LLM_API_KEY configured; using the sample generation client")
    return SampleClient()


def create_app(
    data_dir: Path | None = None,
    *,
    config: GameConfig | None = None,
    client: GenerationClient | None = None,
    characters: CharacterStore | None = None,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    resolved.mkdir(parents=True, exist_ok=True)
    config = config or load_config(resolved / "config.json")

    challenges_file = resolved / "challenges.json"
    challenges = ChallengePool.from_file(challenges_file) if challenges_file.is_file() else ChallengePool()

    characters = characters or CharacterStore(Character(name=n) for n in DEFAULT_FAMILY)
    resources = ResourceStore()
    items = ItemCatalog(DEFAULT_ITEMS)
    inventory = Inventory({item.id: 1 for item in DEFAULT_ITEMS})

    orchestrator = ActionCycleOrchestrator(
        config,
        client or _default_client(config),
        characters,
        resources,
        challenges,
        story_log=StoryLog(resolved),
        inventory=inventory,
        items=items,
    )

    app = FastAPI(title="Bunker Actions")
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.characters = characters
    app.state.resources = resources
    app.state.inventory = inventory
    app.include_router(router, prefix="/api")
    return app
