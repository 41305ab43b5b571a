"""Story log: JSON file record of every generated event, grouped by day.

There is no database. The whole log is one JSON file that is read,
updated and rewritten on each append, the same way the rest of the
project keeps state in flat files.

File layout ({base}/story_log.json):

    {
      "days": [
        {"day": 3, "events": [StoryLogEntry, ...]},
        ...                              ← sorted by day
      ]
    }
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from bunker_actions.models import StoryEvent


class StoryLogEntry(BaseModel):
    category: str
    player_action: str
    title: str
    description: str
    effect_count: int
    choice_count: int
    event: StoryEvent
    ts: str


class StoryDay(BaseModel):
    day: int
    events: list[StoryLogEntry] = Field(default_factory=list)


class StoryLog:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = base_path / "story_log.json"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self) -> Any:
        if not self._path.exists():
            return {"days": []}
        return json.loads(self._path.read_text())

    def _write_json(self, data: Any) -> None:
        self._path.write_text(json.dumps(data, indent=2))

    def _load(self) -> list[StoryDay]:
        return [StoryDay.model_validate(d) for d in self._read_json()["days"]]

    def _save(self, days: list[StoryDay]) -> None:
        self._write_json({"days": [d.model_dump(by_alias=True) for d in days]})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, day: int, player_input: str, event: StoryEvent, category: str) -> StoryLogEntry:
        """Record one event under its day, creating the day in order if needed."""
        days = self._load()
        story_day = next((d for d in days if d.day == day), None)
        if story_day is None:
            story_day = StoryDay(day=day)
            days.append(story_day)
            days.sort(key=lambda d: d.day)

        entry = StoryLogEntry(
            category=category,
            player_action=player_input,
            title=event.title,
            description=event.description,
            effect_count=len(event.effects),
            choice_count=len(event.choices),
            event=event,
            ts=datetime.now(timezone.utc).isoformat(),
        )
        story_day.events.append(entry)
        self._save(days)
        return entry

    def days(self) -> list[StoryDay]:
        return self._load()

    def events_for(self, day: int) -> list[StoryLogEntry]:
        for story_day in self._load():
            if story_day.day == day:
                return story_day.events
        return []

    def recent_titles(self, limit: int) -> list[str]:
        """Titles of the most recent events, oldest first."""
        titles = [e.title for d in self._load() for e in d.events]
        return titles[-limit:] if limit > 0 else []

    def clear(self) -> None:
        self._save([])
