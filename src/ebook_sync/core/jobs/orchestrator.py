"""Issue server-side sync jobs and poll them until they finish."""

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from loguru import logger

from ebook_sync.config import POLL_INTERVAL, POLL_MAX_ATTEMPTS, Backend
from ebook_sync.core.events import EventBus, JobFinished
from ebook_sync.exceptions import ApiError, ValidationError
from ebook_sync.models.job import FLAT_ONLY_KINDS, Credentials, Job, JobKind, JobStatus
from ebook_sync.protocols import SyncApiProtocol

SleepFn = Callable[[float], Awaitable[None]]
TerminalCallback = Callable[[Job], None]


class PollOutcome(StrEnum):
    TERMINAL = "terminal"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    ERROR = "error"


class PollTask:
    """Recurring status check of one job.

    Checks the job every ``interval`` seconds, at most ``max_attempts`` times.
    Stops at the first terminal status and hands the job to ``on_terminal``.
    Running out of attempts stops silently; the remote job is not affected.
    An unreadable status reply stops polling with outcome ``ERROR`` and the
    exception kept in ``error``.
    """

    def __init__(
        self,
        job_id: int,
        fetch: Callable[[int], Awaitable[Job]],
        on_terminal: Callable[[Job], Awaitable[None]],
        *,
        interval: float = POLL_INTERVAL,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.job_id = job_id
        self.interval = interval
        self.max_attempts = max_attempts
        self._fetch = fetch
        self._on_terminal = on_terminal
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

        self.attempts = 0
        self.outcome: PollOutcome | None = None
        self.job: Job | None = None
        self.error: Exception | None = None

    def start(self) -> "PollTask":
        """Schedule polling on the running event loop. Starting twice is a no-op."""
        if self._task is None and self.outcome is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"poll-job-{self.job_id}"
            )
        return self

    def cancel(self) -> None:
        """Stop polling. Idempotent, and harmless after polling ended on its own."""
        if self._task is not None and self._task.done():
            return
        if self._task is not None:
            self._task.cancel()
        if self.outcome is None:
            self.outcome = PollOutcome.CANCELLED
            logger.debug("Cancelled polling of job {} after {} attempts", self.job_id, self.attempts)

    @property
    def done(self) -> bool:
        if self._task is None:
            return self.outcome is not None
        return self._task.done()

    def add_done_callback(self, fn: Callable[["PollTask"], None]) -> None:
        if self._task is None:
            fn(self)
            return
        self._task.add_done_callback(lambda _t: fn(self))

    async def wait(self) -> Job | None:
        """Wait until polling stops; return the terminal job, if one was seen."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.job

    async def _run(self) -> None:
        while self.attempts < self.max_attempts:
            await self._sleep(self.interval)
            self.attempts += 1
            try:
                job = await self._fetch(self.job_id)
            except ApiError as e:
                logger.warning(
                    "Polling job {} failed (attempt {}/{}): {}",
                    self.job_id, self.attempts, self.max_attempts, e,
                )
                continue
            except Exception as e:
                # Malformed reply: stop and keep the error for the caller.
                self.error = e
                self.outcome = PollOutcome.ERROR
                logger.exception("Polling job {} stopped on a bad reply", self.job_id)
                return

            if job.is_terminal:
                self.job = job
                self.outcome = PollOutcome.TERMINAL
                await self._on_terminal(job)
                return

            logger.debug(
                "Job {} is {} ({}/{})",
                job.id, job.status, job.completed_items, job.total_items,
            )

        self.outcome = PollOutcome.EXHAUSTED
        logger.debug("Gave up polling job {} after {} attempts", self.job_id, self.attempts)


class JobOrchestrator:
    """Issue sync operations and follow them to completion.

    The orchestrator only reads job state. When a job completes, the
    ``on_completed`` hook (normally a structure reload) runs; failed jobs
    only surface their error.
    """

    def __init__(
        self,
        api: SyncApiProtocol,
        *,
        backend: Backend,
        credentials: Credentials | None,
        events: EventBus | None = None,
        on_completed: Callable[[], Awaitable[Any]] | None = None,
        interval: float = POLL_INTERVAL,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._api = api
        self.backend = backend
        self.credentials = credentials
        self._events = events
        self._on_completed = on_completed
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._tasks: set[PollTask] = set()

    def _validate(self, kind: JobKind, params: dict[str, Any]) -> None:
        if self.backend is Backend.FLAT:
            if self.credentials is None or not self.credentials.token:
                msg = "An access token is required to sync with the flat backend"
                raise ValidationError(msg)
        elif kind in FLAT_ONLY_KINDS:
            msg = f"{kind} is not supported by the {self.backend} backend"
            raise ValidationError(msg)
        if kind is JobKind.RECREATE_BOOK_FOLDER and not params.get("book_id"):
            msg = "book_id is required to recreate a book folder"
            raise ValidationError(msg)

    async def issue(self, kind: JobKind | str, params: dict[str, Any] | None = None) -> int:
        """Start a server-side job and return its id.

        Raises:
            ValidationError: if required credentials or parameters are missing.
                Nothing is sent in that case.
        """
        try:
            kind = JobKind(kind)
        except ValueError as e:
            msg = f"Unknown job kind: {kind!r}"
            raise ValidationError(msg) from e
        params = dict(params or {})
        self._validate(kind, params)

        credentials = self.credentials if self.backend is Backend.FLAT else None
        job_id = await asyncio.to_thread(self._api.issue_sync_job, kind, credentials, params)
        logger.info("Started {} job {}", kind, job_id)
        return job_id

    def poll_until_terminal(
        self, job_id: int, on_terminal: TerminalCallback | None = None
    ) -> PollTask:
        """Start polling a job; ``on_terminal`` fires once when it completes or fails."""

        async def fetch(jid: int) -> Job:
            return await asyncio.to_thread(self._api.get_job, jid)

        async def finish(job: Job) -> None:
            await self._handle_terminal(job, on_terminal)

        task = PollTask(
            job_id,
            fetch,
            finish,
            interval=self.interval,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )
        self._tasks.add(task)
        task.start()
        task.add_done_callback(self._tasks.discard)
        return task

    async def issue_and_poll(
        self,
        kind: JobKind | str,
        params: dict[str, Any] | None = None,
        on_terminal: TerminalCallback | None = None,
    ) -> PollTask:
        job_id = await self.issue(kind, params)
        return self.poll_until_terminal(job_id, on_terminal)

    async def list_jobs(self, limit: int = 50) -> list[Job]:
        return await asyncio.to_thread(self._api.list_jobs, limit)

    @property
    def active_tasks(self) -> frozenset[PollTask]:
        return frozenset(self._tasks)

    def close(self) -> None:
        """Cancel every running poll; used when the owning context is torn down."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def _handle_terminal(self, job: Job, on_terminal: TerminalCallback | None) -> None:
        if job.status is JobStatus.FAILED:
            logger.error("Job {} ({}) failed: {}", job.id, job.type, job.error_message)
        else:
            logger.info("Job {} ({}) completed", job.id, job.type)

        if on_terminal is not None:
            try:
                on_terminal(job)
            except Exception:
                logger.exception("Terminal callback for job {} failed", job.id)
        if self._events is not None:
            self._events.publish(JobFinished(job))

        if job.status is JobStatus.COMPLETED and self._on_completed is not None:
            try:
                await self._on_completed()
            except Exception:
                logger.exception("Structure reload after job {} failed", job.id)
