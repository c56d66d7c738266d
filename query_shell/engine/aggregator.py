from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from ..app_model import FetchResult, ResultPage
from ..errors import FetchError, error_message
from .backend import QueryBackend
from .projector import discover_columns, project_row

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Accumulated rows and pagination cursor for one submitted query.

    An aggregator belongs to exactly one session version. Pages that come
    back after that version has been superseded are dropped without
    touching ``rows`` or the cursor.

    Usage:
        aggregator = ResultAggregator(backend, version, session.is_current, page_size=1000)
        await aggregator.load_first_page(query_id)
        await aggregator.fetch_more()
    """

    def __init__(
        self,
        backend: QueryBackend,
        session_version: int,
        is_current: Callable[[int], bool],
        *,
        page_size: int = 1000,
    ) -> None:
        self._backend = backend
        self._version = session_version
        self._is_current = is_current
        self._page_size = page_size

        self.query_id: Optional[str] = None
        self.columns: List[str] = []
        self.rows: List[Dict[str, Any]] = []
        self.is_fetching_more = False
        self.exhausted = False
        self.last_error: Optional[str] = None
        self._cursor: Optional[str] = None

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    def _empty(self) -> FetchResult:
        return FetchResult(columns=list(self.columns), rows=[], page_token=self._cursor)

    async def _fetch(self, cursor: Optional[str]) -> ResultPage:
        try:
            return await self._backend.get_results(self.query_id, cursor, self._page_size)
        except Exception as exc:
            raise FetchError(error_message(exc)) from exc

    def _append(self, page: ResultPage) -> FetchResult:
        rows = list(page.rows or [])
        if not self.columns and rows:
            self.columns = discover_columns(rows[0])
        records = [project_row(row, self.columns) for row in rows]
        self.rows.extend(records)
        self._cursor = page.next_cursor or None
        if self._cursor is None:
            self.exhausted = True
        return FetchResult(columns=list(self.columns), rows=records, page_token=self._cursor)

    async def load_first_page(self, query_id: str) -> FetchResult:
        """Fetch page one and fix the column set. Called once per query."""
        if self.query_id is not None:
            return self._empty()
        self.query_id = query_id
        page = await self._fetch(None)
        if not self._is_current(self._version):
            logger.debug(f"Dropping first page of {query_id}: session {self._version} superseded")
            return self._empty()
        return self._append(page)

    async def fetch_more(self) -> FetchResult:
        """
        Fetch the page after the current cursor and append it.

        Returns an empty result without a request when the results are
        exhausted, a fetch is already in flight, or the first page has not
        arrived yet.
        """
        if self.exhausted or self.is_fetching_more or self.query_id is None:
            return self._empty()
        if not self._is_current(self._version):
            return self._empty()

        self.is_fetching_more = True
        try:
            page = await self._fetch(self._cursor)
        except FetchError as exc:
            if self._is_current(self._version):
                self.last_error = exc.message
            raise
        finally:
            self.is_fetching_more = False

        if not self._is_current(self._version):
            logger.debug(f"Dropping page of {self.query_id}: session {self._version} superseded")
            return self._empty()
        self.last_error = None
        return self._append(page)
