import asyncio
from typing import Any, Dict, List, Optional

import pytest

from query_shell.app_model import DatabaseContext, QueryStatus, ResultPage, StatusEvent
from query_shell.config import PollingSettings


def make_rows(count: int, start: int = 0) -> List[List[Dict[str, Any]]]:
    return [
        [{"key": "id", "value": i}, {"key": "message", "value": f"row {i}"}]
        for i in range(start, start + count)
    ]


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Scripted backend: each submit consumes the next script in order."""

    def __init__(self) -> None:
        self._scripts: List[Dict[str, Any]] = []
        self.queries: Dict[str, Dict[str, Any]] = {}
        self.submitted: List[str] = []
        self.status_calls: List[str] = []
        self.result_calls: List[tuple] = []
        self.cancelled: List[str] = []
        self.closed = False

        self.submit_error: Optional[Exception] = None
        self.submit_gates: List[Optional[asyncio.Event]] = []
        self.cancel_error: Optional[Exception] = None
        self.status_failures: Dict[str, int] = {}
        self.status_gates: Dict[str, asyncio.Event] = {}
        self.result_gates: Dict[tuple, asyncio.Event] = {}
        self.result_errors: Dict[tuple, Exception] = {}
        self.before_status = None
        self._waiting: Dict[Any, asyncio.Event] = {}

    def script(self, statuses: List[Any], pages: Optional[Dict[Optional[str], ResultPage]] = None) -> None:
        events = [s if isinstance(s, StatusEvent) else StatusEvent(status=s) for s in statuses]
        self._scripts.append({"statuses": events, "pages": pages or {None: ResultPage(rows=[])}})

    def _entered(self, key: Any) -> asyncio.Event:
        return self._waiting.setdefault(key, asyncio.Event())

    async def wait_for_call(self, key: Any) -> None:
        await asyncio.wait_for(self._entered(key).wait(), timeout=2)

    async def submit(self, sql: str, context: DatabaseContext) -> str:
        self.submitted.append(sql)
        index = len(self.submitted)
        gate = self.submit_gates.pop(0) if self.submit_gates else None
        if gate is not None:
            self._entered(("submit", index)).set()
            await gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        query_id = f"q{index}"
        self.queries[query_id] = self._scripts.pop(0)
        return query_id

    async def get_status(self, query_id: str) -> StatusEvent:
        self.status_calls.append(query_id)
        if self.before_status is not None:
            self.before_status()
        self._entered(query_id).set()
        gate = self.status_gates.get(query_id)
        if gate is not None:
            await gate.wait()
        if self.status_failures.get(query_id, 0) > 0:
            self.status_failures[query_id] -= 1
            raise ConnectionError("connection reset by peer")
        statuses = self.queries[query_id]["statuses"]
        if len(statuses) > 1:
            return statuses.pop(0)
        return statuses[0]

    async def get_results(self, query_id: str, cursor: Optional[str], page_size: int) -> ResultPage:
        key = (query_id, cursor)
        self.result_calls.append(key)
        self._entered(key).set()
        gate = self.result_gates.get(key)
        if gate is not None:
            await gate.wait()
        error = self.result_errors.pop(key, None)
        if error is not None:
            raise error
        return self.queries[query_id]["pages"][cursor]

    async def cancel(self, query_id: str) -> None:
        self.cancelled.append(query_id)
        if self.cancel_error is not None:
            raise self.cancel_error

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings():
    return PollingSettings(
        interval_seconds=0,
        initial_wait_seconds=0,
        max_transport_retries=2,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture
def context():
    return DatabaseContext(project="acme-logs", location="US", database="panther_logs")


@pytest.fixture
def clock():
    return FakeClock()


SUCCESS = [QueryStatus.PROVISIONING, QueryStatus.RUNNING, QueryStatus.SUCCEEDED]
