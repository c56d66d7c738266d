from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..app_model import DatabaseContext, ResultPage, StatusEvent


@runtime_checkable
class QueryBackend(Protocol):
    """Remote query service as seen by the engine.

    Every method is a single round-trip. Transport failures surface as
    ordinary exceptions; the engine decides what is retried.
    """

    async def submit(self, sql: str, context: DatabaseContext) -> str:
        """Start a query and return its job handle."""
        ...

    async def get_status(self, query_id: str) -> StatusEvent:
        """Report where the query is in its remote lifecycle."""
        ...

    async def get_results(self, query_id: str, cursor: Optional[str], page_size: int) -> ResultPage:
        """Return one page of ``{key, value}`` rows, starting at ``cursor``."""
        ...

    async def cancel(self, query_id: str) -> None:
        """Ask the backend to stop a query. Callers treat failure as non-fatal."""
        ...
