"""Tests for the application context wiring."""

import asyncio
import json
import sqlite3

import pytest

from ebook_sync.config import QUEUE_STORE_KEY, Backend, Settings
from ebook_sync.core.context import app_context
from ebook_sync.core.database.store import open_store
from ebook_sync.core.events import StructureReloaded
from ebook_sync.models.job import JobKind, JobStatus
from tests.unit.fakes import FakeLibraryApi


def test_completed_job_reloads_structure(settings: Settings, fake_api: FakeLibraryApi) -> None:
    fake_api.script_job(1, [JobStatus.PROCESSING, JobStatus.COMPLETED])
    reloaded: list[StructureReloaded] = []

    async def scenario():
        async with app_context(settings, api=fake_api) as ctx:
            ctx.subscriptions.append(ctx.events.subscribe(StructureReloaded, reloaded.append))
            task = await ctx.jobs.issue_and_poll(JobKind.SYNC_BOOKS)
            await task.wait()
            return ctx

    ctx = asyncio.run(scenario())

    assert len(reloaded) == 1
    assert ctx.loader.tree == reloaded[0].tree
    assert fake_api.calls[0][1][1].token == "test-token"
    assert ctx.subscriptions[0].closed


def test_nested_backend_has_no_credentials(settings: Settings, fake_api: FakeLibraryApi) -> None:
    nested = Settings(
        server_url=settings.server_url,
        backend=Backend.NESTED,
        token=None,
        data_dir=settings.data_dir,
    )

    async def scenario():
        async with app_context(nested, api=fake_api) as ctx:
            return ctx.credentials

    assert asyncio.run(scenario()) is None


def test_queue_is_restored_and_store_closed(settings: Settings, fake_api: FakeLibraryApi) -> None:
    store = open_store(settings.resolved_data_dir)
    store.save(
        QUEUE_STORE_KEY,
        json.dumps(
            [
                {"id": 1, "kind": "search", "payload": {"keyword": "dune"}, "status": "error"},
                {"id": 2, "kind": "search", "payload": {"keyword": "x"}, "status": "processing"},
            ]
        ),
    )
    store.close()

    async def scenario():
        async with app_context(settings, api=fake_api) as ctx:
            return ctx, [i.id for i in ctx.queue.items]

    ctx, ids = asyncio.run(scenario())

    assert ids == [1]
    with pytest.raises(sqlite3.ProgrammingError):
        ctx.store.load(QUEUE_STORE_KEY)


def test_exit_cancels_running_polls(settings: Settings, fake_api: FakeLibraryApi) -> None:
    fake_api.script_job(1, [JobStatus.PROCESSING])
    slow = Settings(
        server_url=settings.server_url,
        token=settings.token,
        data_dir=settings.data_dir,
        poll_interval=60,
    )

    async def scenario():
        async with app_context(slow, api=fake_api) as ctx:
            task = await ctx.jobs.issue_and_poll(JobKind.SYNC_BOOKS)
        await task.wait()
        return task

    task = asyncio.run(scenario())
    assert task.outcome == "cancelled"
