"""CLI for ebook-sync (structure, sync jobs, search queue, search history)."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Annotated, Any, TypeVar

import typer
from loguru import logger

from ebook_sync.api import LibraryApi
from ebook_sync.config import DEFAULT_SEARCH_PAGES, Settings
from ebook_sync.core.context import AppContext, app_context
from ebook_sync.core.jobs.orchestrator import PollOutcome
from ebook_sync.core.search.history import delete_history, list_history
from ebook_sync.core.tree.render import render_tree
from ebook_sync.exceptions import AuthError, SyncError
from ebook_sync.logging_config import configure_logging
from ebook_sync.models.job import Job
from ebook_sync.models.queue import QueueItem, QueueItemStatus

T = TypeVar("T")

AUTH_FAILED_MESSAGE = (
    "Authentication failed (403): the API token may be invalid or expired; "
    "check the note app's API token settings"
)

app = typer.Typer(help="ebook-sync: mirror an ebook library into your notes and search for books.")
search_app = typer.Typer(help="Queue and run book searches.")
history_app = typer.Typer(help="Browse and clean up the server's search history.")
app.add_typer(search_app, name="search")
app.add_typer(history_app, name="history")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _run(action: Callable[[AppContext], Awaitable[T]], settings: Settings | None = None) -> T:
    """Run an async action inside a fresh application context."""
    settings = settings or Settings.from_env()

    async def runner() -> T:
        async with app_context(settings, api=LibraryApi(settings.server_url)) as ctx:
            return await action(ctx)

    try:
        return asyncio.run(runner())
    except AuthError as e:
        logger.debug("{}", e)
        logger.error(AUTH_FAILED_MESSAGE)
        raise typer.Exit(1) from e
    except SyncError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e


def _dump(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _job_line(job: Job) -> str:
    done, total = job.progress
    line = f"  #{job.id}  {job.type:<22} {job.status:<10} {done}/{total}"
    if job.error_message:
        line += f"  error: {job.error_message}"
    return line


def _job_dict(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": str(job.type),
        "status": str(job.status),
        "total_items": job.total_items,
        "completed_items": job.completed_items,
        "error_message": job.error_message,
        "created_at": job.created_at,
        "completed_at": job.completed_at,
    }


def _item_line(item: QueueItem) -> str:
    line = f"  #{item.id}  {item.kind:<16} {item.status:<10} {item.query}"
    if item.status is QueueItemStatus.COMPLETED:
        line += f"  ({item.result_count} results)"
    elif item.status is QueueItemStatus.ERROR:
        line += f"  error: {item.error_message}"
    return line


# --- structure and sync ---


@app.command()
def tree(
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", "-m", help="Max depth levels to render"),
    ] = None,
    show_ids: bool = typer.Option(False, "--show-ids", help="Show node ids"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Load the note structure from the server and print it."""

    async def action(ctx: AppContext) -> None:
        nodes = await ctx.loader.reload()
        if output_json:
            _dump([n.to_dict() for n in nodes])
        elif not nodes:
            typer.echo("No folders or notes found.")
        else:
            typer.echo(render_tree(nodes, max_depth=max_depth, show_ids=show_ids), nl=False)

    _run(action)


@app.command(name="test-connection")
def test_connection() -> None:
    """Check that the server can reach the note backend."""

    async def action(ctx: AppContext) -> bool:
        return await asyncio.to_thread(ctx.api.test_connection, ctx.credentials)

    if _run(action):
        typer.echo("Connected.")
    else:
        typer.echo("Server is up, but it cannot reach the note backend.")
        raise typer.Exit(1)


@app.command()
def sync(
    kind: str = typer.Argument(
        ...,
        help="sync_structure, sync_books, sync_tagged_books, force_sync_books "
        "or recreate_book_folder",
    ),
    book_id: Annotated[
        str | None,
        typer.Option("--book-id", "-b", help="Book to recreate (recreate_book_folder)"),
    ] = None,
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Poll until the job finishes"),
    token: Annotated[
        str | None, typer.Option("--token", help="Note app API token")
    ] = None,
    port: Annotated[int | None, typer.Option("--port", help="Note app API port")] = None,
) -> None:
    """Start a sync job on the server."""
    settings = Settings.from_env()
    if token:
        settings = replace(settings, token=token)
    if port:
        settings = replace(settings, port=port)
    params = {"book_id": book_id} if book_id else {}

    async def action(ctx: AppContext) -> None:
        if not wait:
            job_id = await ctx.jobs.issue(kind, params)
            typer.echo(f"Job {job_id} started.")
            return

        task = await ctx.jobs.issue_and_poll(kind, params)
        typer.echo(f"Job {task.job_id} started, waiting for it to finish...")
        job = await task.wait()
        if task.outcome is PollOutcome.ERROR:
            msg = f"Lost track of job {task.job_id}: {task.error!r}"
            raise SyncError(msg)
        if task.outcome is PollOutcome.EXHAUSTED:
            typer.echo(
                f"Job {task.job_id} is still running; check it later with "
                f"'ebook-sync job {task.job_id}'."
            )
            return
        if job is None:
            return
        job.raise_for_failure()
        done, total = job.progress
        typer.echo(f"Job {job.id} completed ({done}/{total} items).")

    _run(action, settings)


@app.command()
def jobs(
    limit: int = typer.Option(20, "--limit", "-n", help="Max jobs"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List recent sync jobs."""

    async def action(ctx: AppContext) -> list[Job]:
        return await ctx.jobs.list_jobs(limit)

    rows = _run(action)
    if output_json:
        _dump([_job_dict(j) for j in rows])
        return
    if not rows:
        typer.echo("No jobs.")
        return
    typer.echo(f"{len(rows)} jobs:\n")
    for job in rows:
        typer.echo(_job_line(job))


@app.command()
def job(job_id: int = typer.Argument(..., help="Job id")) -> None:
    """Show one sync job."""

    async def action(ctx: AppContext) -> Job:
        return await asyncio.to_thread(ctx.api.get_job, job_id)

    typer.echo(_job_line(_run(action)))


# --- search queue ---


@search_app.command("add")
def search_add(
    keyword: str = typer.Argument(..., help="Search keyword"),
    pages: int = typer.Option(DEFAULT_SEARCH_PAGES, "--pages", "-p", help="Result pages"),
) -> None:
    """Queue a keyword search and run the queue."""

    async def action(ctx: AppContext) -> QueueItem:
        item = ctx.queue.enqueue_search(keyword, pages)
        await ctx.queue.join()
        return ctx.queue.get(item.id)

    typer.echo(_item_line(_run(action)))


@search_app.command("missing")
def search_missing(
    book_id: str = typer.Argument(..., help="Book id"),
    book_name: str = typer.Argument(..., help="Book name to search for"),
) -> None:
    """Queue a search for a book's missing chapters and run the queue."""

    async def action(ctx: AppContext) -> QueueItem:
        item = ctx.queue.enqueue_missing_chapters(book_id, book_name)
        await ctx.queue.join()
        return ctx.queue.get(item.id)

    typer.echo(_item_line(_run(action)))


@search_app.command("list")
def search_list(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List queued searches."""

    async def action(ctx: AppContext) -> tuple[QueueItem, ...]:
        return ctx.queue.items

    items = _run(action)
    if output_json:
        _dump([{k: v for k, v in i.to_dict().items() if k != "results"} for i in items])
        return
    if not items:
        typer.echo("The search queue is empty.")
        return
    typer.echo(f"{len(items)} searches:\n")
    for item in items:
        typer.echo(_item_line(item))


@search_app.command("show")
def search_show(item_id: int = typer.Argument(..., help="Queue item id")) -> None:
    """Show a queued search with its results."""

    async def action(ctx: AppContext) -> QueueItem:
        return ctx.queue.get(item_id)

    _dump(_run(action).to_dict())


@search_app.command("run")
def search_run() -> None:
    """Run every pending search."""

    async def action(ctx: AppContext) -> tuple[QueueItem, ...]:
        await ctx.queue.join()
        return ctx.queue.items

    items = _run(action)
    failed = sum(1 for i in items if i.status is QueueItemStatus.ERROR)
    typer.echo(f"Queue drained: {len(items)} searches, {failed} failed.")


@search_app.command("retry")
def search_retry(item_id: int = typer.Argument(..., help="Queue item id")) -> None:
    """Retry a failed search."""

    async def action(ctx: AppContext) -> QueueItem:
        ctx.queue.retry(item_id)
        await ctx.queue.join()
        return ctx.queue.get(item_id)

    typer.echo(_item_line(_run(action)))


@search_app.command("remove")
def search_remove(item_id: int = typer.Argument(..., help="Queue item id")) -> None:
    """Remove a search from the queue."""

    async def action(ctx: AppContext) -> QueueItem:
        return ctx.queue.remove(item_id)

    item = _run(action)
    typer.echo(f"Removed search #{item.id} ({item.query}).")


# --- search history ---


@history_app.command("list")
def history_list(
    keyword: Annotated[
        str | None, typer.Option("--keyword", "-k", help="Filter by keyword")
    ] = None,
    limit: int = typer.Option(50, "--limit", "-n", help="Max entries"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List past searches recorded by the server."""

    async def action(ctx: AppContext) -> list[dict[str, Any]]:
        return await asyncio.to_thread(list_history, ctx.api, keyword=keyword, limit=limit)

    rows = _run(action)
    if output_json:
        _dump(rows)
        return
    if not rows:
        typer.echo("No search history.")
        return
    for row in rows:
        typer.echo(f"  #{row.get('id')}  {row.get('keyword', '')}  {row.get('created_at', '')}")


@history_app.command("delete")
def history_delete(
    ids: list[str] = typer.Argument(..., help="History entry ids"),
) -> None:
    """Delete search history entries."""

    async def action(ctx: AppContext) -> Any:
        return await asyncio.to_thread(delete_history, ctx.api, ids)

    result = _run(action)
    typer.echo(f"Deleted {len(result.deleted)} entries.")
    if result.failed:
        typer.echo(f"Failed to delete: {', '.join(str(i) for i in result.failed)}")
        raise typer.Exit(1)
