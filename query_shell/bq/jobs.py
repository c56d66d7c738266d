from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from concurrent.futures import Executor
from functools import partial
from typing import Any, Dict, Optional

from google.cloud import bigquery

from ..app_model import DatabaseContext, QueryStatus, ResultPage, StatusEvent
from .client import build_job_config, get_client

logger = logging.getLogger(__name__)

JOB_STATES = {
    "PENDING": QueryStatus.PROVISIONING,
    "RUNNING": QueryStatus.RUNNING,
}

MAX_TRACKED_JOBS = 256


def job_status(job: bigquery.QueryJob) -> StatusEvent:
    state = (job.state or "").upper()
    if state == "DONE":
        error = job.error_result
        if error:
            return StatusEvent(status=QueryStatus.ERRORED, error_message=error.get("message") or error.get("reason"))
        return StatusEvent(status=QueryStatus.SUCCEEDED)
    status = JOB_STATES.get(state)
    if status is None:
        logger.warning(f"Unknown BigQuery job state {job.state!r} for {job.job_id}, treating as running")
        status = QueryStatus.RUNNING
    return StatusEvent(status=status)


class BigQueryBackend:
    """
    Query backend on BigQuery jobs.

    The google-cloud-bigquery client is blocking, so every round-trip runs
    in an executor and the event loop stays free while it waits.
    """

    def __init__(
        self,
        client: bigquery.Client,
        *,
        location: Optional[str] = None,
        use_query_cache: bool = False,
        labels: Optional[Dict[str, Any]] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._client = client
        self._location = location
        self._use_query_cache = use_query_cache
        self._labels = dict(labels or {})
        self._executor = executor
        self._job_locations: "OrderedDict[str, Optional[str]]" = OrderedDict()

    @classmethod
    def from_config(cls, config: Dict[str, Any], context: DatabaseContext) -> "BigQueryBackend":
        bq = config["app"]["bq"]
        return cls(
            get_client(context.project, context.location),
            location=context.location,
            use_query_cache=bool(bq.get("use_query_cache")),
            labels=bq.get("labels") or {},
        )

    def _run_in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(self._executor, func, *args)

    def _remember_location(self, query_id: str, location: Optional[str]) -> None:
        self._job_locations[query_id] = location
        self._job_locations.move_to_end(query_id)
        while len(self._job_locations) > MAX_TRACKED_JOBS:
            self._job_locations.popitem(last=False)

    def _location_for(self, query_id: str) -> Optional[str]:
        return self._job_locations.get(query_id, self._location)

    def _submit(self, sql: str, context: DatabaseContext) -> str:
        job_config = build_job_config(context, self._use_query_cache, self._labels)
        location = context.location or self._location
        job = self._client.query(sql, job_config=job_config, location=location)
        self._remember_location(job.job_id, job.location or location)
        return job.job_id

    def _get_status(self, query_id: str) -> StatusEvent:
        job = self._client.get_job(query_id, location=self._location_for(query_id))
        event = job_status(job)
        if event.status is QueryStatus.ERRORED:
            self._job_locations.pop(query_id, None)
        return event

    def _fetch_page(self, query_id: str, cursor: Optional[str], page_size: int) -> ResultPage:
        job = self._client.get_job(query_id, location=self._location_for(query_id))
        if job.destination is None:
            raise ValueError(f"Query {query_id} has no result table.")
        result_iter = self._client.list_rows(job.destination, page_size=page_size, page_token=cursor)
        page = next(iter(result_iter.pages), None)
        rows = list(page) if page is not None else []
        columns = [field.name for field in result_iter.schema or []]
        data = [[{"key": col, "value": row.get(col)} for col in columns] for row in rows]
        return ResultPage(rows=data, next_cursor=result_iter.next_page_token)

    def _cancel(self, query_id: str) -> None:
        location = self._job_locations.pop(query_id, self._location)
        self._client.cancel_job(query_id, location=location)

    async def submit(self, sql: str, context: DatabaseContext) -> str:
        return await self._run_in_executor(partial(self._submit, sql, context))

    async def get_status(self, query_id: str) -> StatusEvent:
        return await self._run_in_executor(self._get_status, query_id)

    async def get_results(self, query_id: str, cursor: Optional[str], page_size: int) -> ResultPage:
        return await self._run_in_executor(self._fetch_page, query_id, cursor, page_size)

    async def cancel(self, query_id: str) -> None:
        await self._run_in_executor(self._cancel, query_id)
        logger.info(f"Requested BigQuery cancel for {query_id}")

    def close(self) -> None:
        self._client.close()
