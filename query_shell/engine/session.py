"""
Query Session

Top-level orchestrator behind the SQL shell: owns the single active query,
sequences submission, polling and the first results page, and serves
"fetch more" requests from the accumulated results.

Every asynchronous continuation carries the session version it was started
for. A new submission (or a cancel) bumps the version, after which any
response belonging to the older version is dropped instead of applied.
Nothing is preempted at the transport level.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Callable, Optional, Set

from ..app_model import DatabaseContext, FetchResult, QueryStatus, SessionSnapshot, StatusEvent
from ..config import PollingSettings
from ..errors import FetchError, PollTerminalError, PollTransportError, SubmissionError, error_message
from .aggregator import ResultAggregator
from .backend import QueryBackend
from .poller import ResultPoller
from .submitter import QuerySubmitter

logger = logging.getLogger(__name__)


class QuerySession:
    """
    One SQL shell's query lifecycle: idle -> provisioning -> running -> succeeded | errored,
    and any non-idle state -> cancelled.

    The consumer API never raises engine errors; failures end up in
    ``error_message`` (lifecycle) or the snapshot's ``fetch_error``
    (pagination) for the caller to render.

    Usage:
        session = QuerySession(backend, context, settings=PollingSettings())
        session.submit_query("SELECT * FROM logs LIMIT 10")
        snapshot = await session.wait()
        await session.fetch_more_results()
        await session.close()
    """

    def __init__(
        self,
        backend: QueryBackend,
        context: DatabaseContext,
        *,
        settings: Optional[PollingSettings] = None,
        page_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._context = context
        self._page_size = page_size
        self._clock = clock
        self._submitter = QuerySubmitter(backend)
        self._poller = ResultPoller(backend, settings)

        self.version = 0
        self.status = QueryStatus.IDLE
        self.query_id: Optional[str] = None
        self.submitted_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.error_message: Optional[str] = None

        self._aggregator: Optional[ResultAggregator] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[None]] = set()

    def is_current(self, version: int) -> bool:
        return version == self.version

    @property
    def is_live(self) -> bool:
        return self.status.is_live

    def elapsed_seconds(self) -> float:
        """Seconds since the query started running, frozen once it settles."""
        if self.submitted_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else self._clock()
        return max(0.0, end - self.submitted_at)

    def snapshot(self) -> SessionSnapshot:
        aggregator = self._aggregator
        return SessionSnapshot(
            status=self.status,
            elapsed_seconds=self.elapsed_seconds(),
            rows=list(aggregator.rows) if aggregator else [],
            columns=list(aggregator.columns) if aggregator else [],
            is_fetching_more=aggregator.is_fetching_more if aggregator else False,
            error_message=self.error_message,
            query_id=self.query_id,
            session_version=self.version,
            exhausted=aggregator.exhausted if aggregator else False,
            fetch_error=aggregator.last_error if aggregator else None,
        )

    def _spawn(self, coro, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _abandon(self) -> Optional[str]:
        if not self.status.is_live:
            return None
        query_id = self.query_id
        self.version += 1
        self.status = QueryStatus.CANCELLED
        if self.submitted_at is not None:
            self.finished_at = self._clock()
        logger.info(f"Cancelled query {query_id or '<unsubmitted>'} (now session {self.version})")
        return query_id

    async def _cancel_remote(self, query_id: str) -> None:
        cancel = getattr(self._backend, "cancel", None)
        if cancel is None:
            return
        try:
            await cancel(query_id)
        except Exception as exc:
            logger.warning(f"Remote cancel of {query_id} failed: {error_message(exc)}")

    def _apply(self, version: int, event: StatusEvent) -> None:
        if not self.is_current(version):
            return
        if event.status is QueryStatus.RUNNING:
            if self.submitted_at is None:
                self.submitted_at = self._clock()
            self.status = QueryStatus.RUNNING
            logger.info(f"Query {self.query_id} running")
        elif event.status is QueryStatus.PROVISIONING:
            self.status = QueryStatus.PROVISIONING

    def _fail(self, version: int, message: str) -> None:
        if not self.is_current(version):
            return
        self.status = QueryStatus.ERRORED
        self.error_message = message
        if self.submitted_at is not None:
            self.finished_at = self._clock()
        logger.info(f"Query {self.query_id or '<unsubmitted>'} errored: {message}")

    async def _run(self, version: int, sql: str, aggregator: ResultAggregator) -> None:
        try:
            await self._lifecycle(version, sql, aggregator)
        except Exception as exc:
            logger.exception(f"Unexpected failure in session {version}")
            self._fail(version, error_message(exc))

    async def _lifecycle(self, version: int, sql: str, aggregator: ResultAggregator) -> None:
        try:
            query_id = await self._submitter.submit(sql, self._context)
        except SubmissionError as exc:
            self._fail(version, exc.message)
            return
        if not self.is_current(version):
            logger.info(f"Query {query_id} was superseded while submitting, cancelling it")
            await self._cancel_remote(query_id)
            return
        self.query_id = query_id

        try:
            async for event in self._poller.poll(query_id, version, self.is_current):
                self._apply(version, event)
        except (PollTransportError, PollTerminalError) as exc:
            self._fail(version, exc.message)
            return
        if not self.is_current(version):
            return

        try:
            await aggregator.load_first_page(query_id)
        except FetchError as exc:
            self._fail(version, exc.message)
            return
        if not self.is_current(version):
            return

        now = self._clock()
        if self.submitted_at is None:
            self.submitted_at = now
        self.finished_at = now
        self.status = QueryStatus.SUCCEEDED
        logger.info(
            f"Query {query_id} succeeded: {len(aggregator.rows)} rows in first page, "
            f"exhausted={aggregator.exhausted}"
        )

    def submit_query(self, sql: str) -> int:
        """Start a new query, superseding any live one. Returns the new session version."""
        previous = self._abandon()

        self.version += 1
        version = self.version
        self.status = QueryStatus.PROVISIONING
        self.query_id = None
        self.submitted_at = None
        self.finished_at = None
        self.error_message = None

        aggregator = ResultAggregator(self._backend, version, self.is_current, page_size=self._page_size)
        self._aggregator = aggregator
        self._task = self._spawn(self._run(version, sql, aggregator), name=f"query-session-{version}")
        if previous:
            self._spawn(self._cancel_remote(previous), name=f"query-cancel-{previous}")
        return version

    async def cancel_query(self) -> SessionSnapshot:
        """Move any non-idle session to cancelled. Only a live query is cancelled remotely."""
        if self.status.is_live:
            query_id = self._abandon()
            if query_id:
                await self._cancel_remote(query_id)
        elif self.status is not QueryStatus.IDLE:
            self.version += 1
            self.status = QueryStatus.CANCELLED
            logger.info(f"Cancelled settled query {self.query_id} (now session {self.version})")
        return self.snapshot()

    async def fetch_more_results(self) -> FetchResult:
        aggregator = self._aggregator
        if aggregator is None or self.status is not QueryStatus.SUCCEEDED:
            return FetchResult(columns=list(aggregator.columns) if aggregator else [], rows=[])
        try:
            return await aggregator.fetch_more()
        except FetchError as exc:
            logger.warning(f"Fetching more rows for {aggregator.query_id} failed: {exc.message}")
            return FetchResult(columns=list(aggregator.columns), rows=[], page_token=aggregator.cursor)

    async def wait(self) -> SessionSnapshot:
        """Wait until the latest submission settles (or is superseded and stops)."""
        while True:
            task = self._task
            if task is None or task.done():
                break
            await asyncio.wait({task})
        return self.snapshot()

    async def run_query(self, sql: str) -> SessionSnapshot:
        self.submit_query(sql)
        return await self.wait()

    async def close(self) -> None:
        query_id = self._abandon()
        if query_id:
            await self._cancel_remote(query_id)
        self.version += 1

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        close = getattr(self._backend, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result
