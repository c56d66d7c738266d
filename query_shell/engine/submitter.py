from __future__ import annotations

import logging

from ..app_model import DatabaseContext
from ..errors import SubmissionError, error_message
from .backend import QueryBackend

logger = logging.getLogger(__name__)


class QuerySubmitter:
    """Turns SQL text plus session parameters into a backend job handle. No retries."""

    def __init__(self, backend: QueryBackend) -> None:
        self._backend = backend

    async def submit(self, sql: str, context: DatabaseContext) -> str:
        if not sql or not sql.strip():
            raise SubmissionError("SQL is required.")
        try:
            query_id = await self._backend.submit(sql, context)
        except Exception as exc:
            raise SubmissionError(error_message(exc)) from exc
        if not query_id:
            raise SubmissionError("Backend returned no query id.")
        logger.info(f"Submitted query {query_id} (project={context.project}, database={context.database})")
        return str(query_id)
