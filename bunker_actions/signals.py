"""Typed observer signals for orchestrator notifications.

Each notification is its own Signal instance owned by the orchestrator,
not a module-global event:

    unsubscribe = orchestrator.all_resolved.subscribe(on_day_done)
    ...
    unsubscribe()

Handlers run synchronously inside emit(). A failing handler is logged and
does not stop the remaining handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class Signal(Generic[T]):
    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[T]] = []

    def subscribe(self, handler: Handler[T]) -> Callable[[], None]:
        """Register *handler*; returns a callable that removes it again."""
        if handler not in self._handlers:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: Handler[T]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                handler(payload)
            except Exception:
                logger.exception("handler for signal %s failed", self.name)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
