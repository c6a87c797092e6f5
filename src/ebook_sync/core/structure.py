"""Fetch the backend structure and keep the most recently built tree."""

import asyncio

from loguru import logger

from ebook_sync.config import Backend
from ebook_sync.core.events import EventBus, StructureReloaded
from ebook_sync.core.tree.builder import FlatStructure, NestedStructure, StructureSource
from ebook_sync.models.tree import TreeNode
from ebook_sync.protocols import SyncApiProtocol


def fetch_structure(api: SyncApiProtocol, backend: Backend) -> StructureSource:
    """Fetch the structure of the configured backend (blocking)."""
    if backend is Backend.FLAT:
        payload = api.get_flat_structure()
        return FlatStructure.from_payload(payload["folders"], payload["notes"])
    return NestedStructure.from_payload(api.get_nested_structure())


class StructureLoader:
    """Reload the structure tree on demand.

    Reloads are idempotent reads; when two overlap, whichever finishes last
    determines ``tree``.
    """

    def __init__(
        self, api: SyncApiProtocol, backend: Backend, events: EventBus | None = None
    ) -> None:
        self._api = api
        self.backend = backend
        self._events = events
        self.tree: tuple[TreeNode, ...] = ()

    async def reload(self) -> tuple[TreeNode, ...]:
        source = await asyncio.to_thread(fetch_structure, self._api, self.backend)
        tree = source.build()
        self.tree = tree
        logger.debug("Structure reloaded ({} backend, {} root nodes)", self.backend, len(tree))
        if self._events is not None:
            self._events.publish(StructureReloaded(tree))
        return tree
