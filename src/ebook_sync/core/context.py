"""Application lifespan: wire every component together and tear it down."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ebook_sync.api import LibraryApi
from ebook_sync.config import Backend, Settings
from ebook_sync.core.database.store import SqliteStore, open_store
from ebook_sync.core.events import EventBus, Subscription
from ebook_sync.core.jobs.orchestrator import JobOrchestrator
from ebook_sync.core.search.queue import SearchQueueProcessor
from ebook_sync.core.structure import StructureLoader
from ebook_sync.models.job import Credentials


@dataclass
class AppContext:
    """Components shared by one run of the application."""

    settings: Settings
    api: Any
    store: SqliteStore
    events: EventBus
    loader: StructureLoader
    jobs: JobOrchestrator
    queue: SearchQueueProcessor
    subscriptions: list[Subscription] = field(default_factory=list)

    @property
    def credentials(self) -> Credentials | None:
        return self.jobs.credentials


@asynccontextmanager
async def app_context(
    settings: Settings,
    *,
    api: Any = None,
    store: SqliteStore | None = None,
) -> AsyncIterator[AppContext]:
    """Open the state store, build the components, restore the search queue.

    On exit, polling and queue continuations are cancelled, subscriptions
    are closed and the store is closed.
    """
    if api is None:
        api = LibraryApi(settings.server_url)
    if store is None:
        store = open_store(settings.resolved_data_dir)

    credentials = (
        Credentials(token=settings.token, port=settings.port)
        if settings.backend is Backend.FLAT
        else None
    )
    events = EventBus()
    loader = StructureLoader(api, settings.backend, events)
    jobs = JobOrchestrator(
        api,
        backend=settings.backend,
        credentials=credentials,
        events=events,
        on_completed=loader.reload,
        interval=settings.poll_interval,
    )
    queue = SearchQueueProcessor(api, store, events=events)
    ctx = AppContext(
        settings=settings,
        api=api,
        store=store,
        events=events,
        loader=loader,
        jobs=jobs,
        queue=queue,
    )

    try:
        queue.restore()
        yield ctx
    finally:
        jobs.close()
        queue.close()
        for sub in ctx.subscriptions:
            sub.close()
        store.close()
        logger.debug("Application context closed")
