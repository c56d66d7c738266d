from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Dict, Optional, TextIO

from .app_model import FetchResult
from .bq.jobs import BigQueryBackend
from .config import ConfigLoader, polling_settings
from .engine.session import QuerySession
from .gcloud import resolve_context

logger = logging.getLogger(__name__)


def _snapshot(session: QuerySession) -> Dict[str, Any]:
    data = asdict(session.snapshot())
    data["status"] = session.status.value
    return data


def _page(result: FetchResult) -> Dict[str, Any]:
    return asdict(result)


def build_session(config: Dict[str, Any]) -> QuerySession:
    context = resolve_context(config)
    backend = BigQueryBackend.from_config(config, context)
    return QuerySession(
        backend,
        context,
        settings=polling_settings(config),
        page_size=config["app"]["page_size"],
    )


async def handle_request(payload: Dict[str, Any], session: QuerySession, loader: ConfigLoader) -> Dict[str, Any]:
    op = payload.get("op")
    sql = payload.get("sql")

    if op in {"submit_query", "run_query"}:
        if not sql:
            return {"ok": False, "error": {"message": "SQL is required."}}
        if op == "run_query":
            await session.run_query(sql)
            return {"ok": True, "snapshot": _snapshot(session)}
        version = session.submit_query(sql)
        return {"ok": True, "session_version": version}

    if op == "cancel_query":
        await session.cancel_query()
        return {"ok": True, "snapshot": _snapshot(session)}

    if op == "fetch_more_results":
        result = await session.fetch_more_results()
        return {"ok": True, "page": _page(result), "snapshot": _snapshot(session)}

    if op == "snapshot":
        return {"ok": True, "snapshot": _snapshot(session)}

    if op == "get_effective_config":
        return {
            "ok": True,
            "config": loader.load(),
            "paths": {
                "config": loader.config_path,
            },
        }

    return {"ok": False, "error": {"message": f"Unknown op {op}."}}


async def serve(
    stdin: TextIO,
    stdout: TextIO,
    loader: ConfigLoader,
    session: Optional[QuerySession] = None,
) -> None:
    """Answer one JSON request per input line until EOF, then close the session."""
    if session is None:
        session = build_session(loader.load())
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
                response = await handle_request(payload, session, loader)
            except Exception as exc:
                logger.exception("Request failed")
                response = {"ok": False, "error": {"message": "Unhandled error", "detail": str(exc)}}
            stdout.write(json.dumps(response, ensure_ascii=False, default=str) + "\n")
            stdout.flush()
    finally:
        await session.close()


def main() -> None:
    loader = ConfigLoader()
    config = loader.load()
    level = getattr(logging, config["app"]["logging"]["level"], logging.WARNING)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(serve(sys.stdin, sys.stdout, loader))


if __name__ == "__main__":
    main()
