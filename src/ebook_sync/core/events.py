"""Typed events with explicitly scoped subscriptions."""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from ebook_sync.models.job import Job
from ebook_sync.models.queue import QueueItem
from ebook_sync.models.tree import TreeNode


@dataclass(frozen=True)
class JobFinished:
    job: Job


@dataclass(frozen=True)
class StructureReloaded:
    tree: tuple[TreeNode, ...]


@dataclass(frozen=True)
class SearchCompleted:
    item: QueueItem


@dataclass(frozen=True)
class MissingChaptersCompleted:
    item: QueueItem


Event = JobFinished | StructureReloaded | SearchCompleted | MissingChaptersCompleted
E = TypeVar("E", JobFinished, StructureReloaded, SearchCompleted, MissingChaptersCompleted)


class Subscription:
    """Handle returned by EventBus.subscribe; closing it unsubscribes."""

    def __init__(self, bus: "EventBus", event_type: type, handler: Callable[[Any], None]) -> None:
        self._bus = bus
        self._event_type = event_type
        self._handler = handler
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self._event_type, self._handler)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class EventBus:
    """Dispatch events to handlers subscribed for their exact type."""

    def __init__(self) -> None:
        self._handlers: defaultdict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Subscription:
        self._handlers[event_type].append(handler)
        return Subscription(self, event_type, handler)

    def _remove(self, event_type: type, handler: Callable[[Any], None]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Event) -> None:
        """Call every handler for the event's type. Handler errors are logged."""
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for {}", type(event).__name__)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))
