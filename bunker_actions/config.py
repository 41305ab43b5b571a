"""Game and connection configuration.

Every tunable the pipeline reads lives here: category activation
probabilities, the intensity → magnitude table, pacing bands, total day
count, and the generation-service connection. Nothing in the core
hard-codes these values.

Resolution order (later wins):
  1. defaults below
  2. JSON file passed to load_config(); partial files are merged
  3. environment (.env is loaded first) for the connection settings:
       LLM_PROVIDER_URL, LLM_API_KEY, LLM_PROVIDER_FORMAT, LLM_MODEL, LLM_TIMEOUT
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class MagnitudeRange(BaseModel):
    """Concrete value produced by intensity 1 (min) and intensity 10 (max)."""

    min: float
    max: float


class MagnitudeTable(BaseModel):
    health: MagnitudeRange = Field(default_factory=lambda: MagnitudeRange(min=5, max=50))
    sanity: MagnitudeRange = Field(default_factory=lambda: MagnitudeRange(min=3, max=30))
    hunger: MagnitudeRange = Field(default_factory=lambda: MagnitudeRange(min=5, max=40))
    thirst: MagnitudeRange = Field(default_factory=lambda: MagnitudeRange(min=5, max=40))
    resource: MagnitudeRange = Field(default_factory=lambda: MagnitudeRange(min=1, max=10))
    # Infection also costs health: lerp(health.min * lo, health.max * hi)
    infection_health_factors: tuple[float, float] = (0.5, 0.3)


class PacingBand(BaseModel):
    """Pacing directive used while day <= until_day (None = open-ended)."""

    until_day: int | None
    label: str
    directive: str


def _default_pacing() -> list[PacingBand]:
    return [
        PacingBand(until_day=5, label="Days 1-5: Settling in",
                   directive="Minor issues, resource discovery. Low danger."),
        PacingBand(until_day=12, label="Days 6-12: Rising tension",
                   directive="Supplies dwindling, first outside threats."),
        PacingBand(until_day=20, label="Days 13-20: Crisis",
                   directive="Major shortages, raids, disease, hard moral choices."),
        PacingBand(until_day=27, label="Days 21-27: Desperation",
                   directive="Resources critical, casualties likely."),
        PacingBand(until_day=None, label="Endgame",
                   directive="Final push for survival, maximum stakes."),
    ]


ProviderFormat = Literal["openai", "koboldcpp"]


class ConnectionConfig(BaseModel):
    provider_url: str = "https://openrouter.ai/api"
    api_key: str = ""
    provider_format: ProviderFormat = "openai"
    model: str = "mistralai/mistral-small"
    timeout: float = 60.0
    structured_mode: bool = True


class GameConfig(BaseModel):
    total_days: int = 30
    dilemma_chance: float = Field(0.6, ge=0, le=1)
    family_request_chance: float = Field(0.4, ge=0, le=1)
    needy_sanity_threshold: float = 30.0
    magnitudes: MagnitudeTable = Field(default_factory=MagnitudeTable)
    pacing_bands: list[PacingBand] = Field(default_factory=_default_pacing)
    recent_titles_in_prompt: int = 10
    # Optional Handlebars overrides keyed "system" / "user"
    prompt_templates: dict[str, str] = Field(default_factory=dict)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)

    @model_validator(mode="after")
    def _check_bands(self) -> "GameConfig":
        if not self.pacing_bands:
            raise ValueError("pacing_bands must not be empty")
        limits = [b.until_day for b in self.pacing_bands[:-1]]
        if any(limit is None for limit in limits):
            raise ValueError("only the last pacing band may be open-ended")
        if limits != sorted(limits):
            raise ValueError("pacing band thresholds must be ascending")
        return self

    def pacing_for(self, day: int) -> PacingBand:
        for band in self.pacing_bands:
            if band.until_day is None or day <= band.until_day:
                return band
        return self.pacing_bands[-1]


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    env_map = {
        "LLM_PROVIDER_URL": "provider_url",
        "LLM_API_KEY": "api_key",
        "LLM_PROVIDER_FORMAT": "provider_format",
        "LLM_MODEL": "model",
        "LLM_TIMEOUT": "timeout",
    }
    conn = {field: os.environ[var] for var, field in env_map.items() if os.getenv(var)}
    return {"connection": conn} if conn else {}


def load_config(path: Path | None = None, *, env_file: Path | None = None) -> GameConfig:
    """Read config, returning defaults merged with stored and environment values."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    data: dict[str, Any] = GameConfig().model_dump()
    if path is not None and path.is_file():
        stored = json.loads(path.read_text())
        data = _deep_merge(data, stored)
        logger.debug("config loaded from %s", path)
    elif path is not None:
        logger.info("config file %s not found, using defaults", path)

    data = _deep_merge(data, _env_overrides())
    return GameConfig.model_validate(data)


def save_config(config: GameConfig, path: Path) -> None:
    """Persist config as JSON. The API key is never written to disk."""
    data = config.model_dump(mode="json")
    data["connection"]["api_key"] = ""
    path.write_text(json.dumps(data, indent=2))
