"""Typed event bus — decoupled inter-service communication.

Processors and the city tick publish what happened; notification and
bookkeeping code subscribes without the engine knowing about it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, TypeVar, Type

T = TypeVar("T")


# -- Movement events -----------------------------------------------------

@dataclass(frozen=True)
class MovementProcessed:
    """A due movement was resolved and committed."""
    world_id: str
    movement_id: str
    movement_type: str
    outcome: str  # "returning", "deleted", "founding"


@dataclass(frozen=True)
class MovementFailed:
    """Processing a movement raised; it stays due for the next poll."""
    world_id: str
    movement_id: str
    error: str


@dataclass(frozen=True)
class ReportCreated:
    """A report document was written to an account's inbox."""
    world_id: str
    owner_id: str
    report_type: str
    title: str


# -- City events ---------------------------------------------------------

@dataclass(frozen=True)
class QueueItemCompleted:
    """A queue entry finished — the user-facing notification."""
    city_id: str
    queue: str
    message: str
    icon_type: str
    icon_id: str


@dataclass(frozen=True)
class CitySaved:
    """The active city was persisted by the autosave."""
    world_id: str
    city_id: str


# -- Event Bus -----------------------------------------------------------

class EventBus:
    """Simple synchronous event bus with typed events.

    Usage:
        bus = EventBus()
        bus.on(ReportCreated, lambda e: print(e.title))
        bus.emit(ReportCreated(world_id="w", owner_id="u", report_type="trade", title="t"))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def on(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Register a handler for an event type."""
        self._handlers[event_type].append(handler)

    def off(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Unregister a handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: object) -> None:
        """Emit an event to all registered handlers."""
        for handler in self._handlers.get(type(event), []):
            handler(event)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
