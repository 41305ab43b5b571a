"""In-memory collaborator stores.

The pipeline only talks to these through small method surfaces
(find / all_alive / adjust / remove / get), so a game can swap in its own
storage. These implementations back the HTTP app and the tests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from bunker_actions.models import Character, Item

logger = logging.getLogger(__name__)

DEFAULT_RESOURCES = {"Food": 10, "Water": 10, "Supplies": 5}


class CharacterStore:
    """Family roster keyed by name (case-insensitive lookup)."""

    def __init__(self, characters: Iterable[Character] = ()) -> None:
        self._characters: list[Character] = []
        for character in characters:
            self.add(character)

    def add(self, character: Character) -> None:
        if self.find(character.name) is not None:
            raise ValueError(f"Character {character.name!r} already exists")
        self._characters.append(character)

    def find(self, name: str) -> Character | None:
        key = name.strip().lower()
        for character in self._characters:
            if character.name.lower() == key:
                return character
        return None

    def all(self) -> list[Character]:
        return list(self._characters)

    def all_alive(self) -> list[Character]:
        return [c for c in self._characters if c.is_alive]


class ResourceStore:
    """Shared pools (Food, Water, Supplies). Amounts never drop below zero."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._amounts: dict[str, int] = dict(DEFAULT_RESOURCES if initial is None else initial)

    def get(self, resource: str) -> int:
        return self._amounts.get(resource, 0)

    def adjust(self, resource: str, delta: int) -> None:
        self._amounts[resource] = max(0, self.get(resource) + delta)
        logger.debug("resource %s → %d", resource, self._amounts[resource])

    def snapshot(self) -> dict[str, int]:
        return dict(self._amounts)


class ItemCatalog:
    """Item definitions by id."""

    def __init__(self, items: Iterable[Item] = ()) -> None:
        self._items = {item.id: item for item in items}

    def add(self, item: Item) -> None:
        self._items[item.id] = item

    def get(self, item_id: str) -> Item | None:
        return self._items.get(item_id)


class Inventory:
    """Item counts held by the family."""

    def __init__(self, counts: dict[str, int] | None = None) -> None:
        self._counts: dict[str, int] = dict(counts or {})

    def add(self, item_id: str, quantity: int = 1) -> None:
        self._counts[item_id] = self.count(item_id) + quantity

    def count(self, item_id: str) -> int:
        return self._counts.get(item_id, 0)

    def remove(self, item_id: str, quantity: int = 1) -> bool:
        """Remove *quantity* of an item. False (and no change) if not enough held."""
        held = self.count(item_id)
        if held < quantity:
            return False
        if held == quantity:
            del self._counts[item_id]
        else:
            self._counts[item_id] = held - quantity
        return True

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)
