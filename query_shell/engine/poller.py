from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from ..app_model import QueryStatus, StatusEvent
from ..config import PollingSettings
from ..errors import PollTerminalError, PollTransportError, error_message
from .backend import QueryBackend

logger = logging.getLogger(__name__)


class ResultPoller:
    """
    Repeated status checks for a submitted query until it settles.

    ``poll`` yields one StatusEvent per observed status change and stops
    after ``succeeded``. A backend-reported failure raises
    PollTerminalError; a status check that keeps failing after the retry
    budget raises PollTransportError. As soon as ``is_current`` reports
    that the session version the loop started with has been superseded,
    the loop ends without yielding or raising anything for it.
    """

    def __init__(self, backend: QueryBackend, settings: Optional[PollingSettings] = None) -> None:
        self._backend = backend
        self._settings = settings or PollingSettings()

    async def _check(
        self,
        query_id: str,
        session_version: int,
        is_current: Callable[[int], bool],
    ) -> StatusEvent:
        settings = self._settings

        def superseded(retry_state: RetryCallState) -> bool:
            return not is_current(session_version)

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Status check for {query_id} failed "
                f"(attempt {retry_state.attempt_number}/{settings.max_transport_retries + 1}): {exc}"
            )

        retrying = AsyncRetrying(
            stop=stop_any(stop_after_attempt(settings.max_transport_retries + 1), superseded),
            wait=wait_exponential(multiplier=settings.backoff_base_seconds, max=settings.backoff_max_seconds),
            retry=retry_if_exception_type(Exception),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._backend.get_status(query_id)
        except Exception as exc:
            raise PollTransportError(error_message(exc)) from exc
        raise PollTransportError(f"No status received for {query_id}")

    async def poll(
        self,
        query_id: str,
        session_version: int,
        is_current: Callable[[int], bool],
    ) -> AsyncIterator[StatusEvent]:
        if self._settings.initial_wait_seconds > 0:
            await asyncio.sleep(self._settings.initial_wait_seconds)

        last_status: Optional[QueryStatus] = None
        while True:
            if not is_current(session_version):
                return
            try:
                event = await self._check(query_id, session_version, is_current)
            except PollTransportError:
                if not is_current(session_version):
                    return
                raise
            if not is_current(session_version):
                logger.debug(f"Discarding stale status for {query_id} (session {session_version})")
                return

            event = StatusEvent(status=QueryStatus(event.status), error_message=event.error_message)
            if event.status is QueryStatus.ERRORED:
                raise PollTerminalError(event.error_message or "Query failed.")
            if event.status is QueryStatus.CANCELLED:
                raise PollTerminalError(event.error_message or "Query was cancelled.")
            if event.status is QueryStatus.IDLE:
                raise PollTerminalError(f"Backend reported unexpected status {event.status.value}.")
            if event.status is not last_status:
                last_status = event.status
                yield event
            if event.status is QueryStatus.SUCCEEDED:
                return
            await asyncio.sleep(self._settings.interval_seconds)
