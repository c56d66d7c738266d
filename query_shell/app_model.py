from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class QueryStatus(str, Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in (QueryStatus.PROVISIONING, QueryStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.SUCCEEDED, QueryStatus.ERRORED, QueryStatus.CANCELLED)


@dataclass
class DatabaseContext:
    project: Optional[str]
    location: Optional[str]
    database: Optional[str] = None


@dataclass
class StatusEvent:
    status: QueryStatus
    error_message: Optional[str] = None


@dataclass
class ResultPage:
    rows: List[Any]
    next_cursor: Optional[str] = None


@dataclass
class FetchResult:
    columns: List[str]
    rows: List[Dict[str, Any]]
    page_token: Optional[str] = None


@dataclass
class SessionSnapshot:
    status: QueryStatus
    elapsed_seconds: float
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    is_fetching_more: bool = False
    error_message: Optional[str] = None
    query_id: Optional[str] = None
    session_version: int = 0
    exhausted: bool = False
    fetch_error: Optional[str] = None
