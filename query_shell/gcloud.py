from __future__ import annotations

import subprocess
from typing import Any, Dict, Optional

from .app_model import DatabaseContext

FALLBACK_LOCATION = "US"


def _gcloud_value(key: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["gcloud", "config", "get-value", key],
            capture_output=True,
            text=True,
            check=False,
        )
    except (FileNotFoundError, PermissionError):
        return None
    if result.returncode != 0:
        return None
    value = result.stdout.strip()
    if value in {"", "(unset)"}:
        return None
    return value


def default_project() -> Optional[str]:
    return _gcloud_value("project")


def default_location() -> Optional[str]:
    for key in ["bigquery/location", "compute/region"]:
        value = _gcloud_value(key)
        if value:
            return value
    return None


def resolve_context(config: Dict[str, Any]) -> DatabaseContext:
    """Fill the session parameters from config first, gcloud second."""
    app = config["app"]
    project = app.get("default_project") or default_project()
    location = app.get("default_location") or default_location() or FALLBACK_LOCATION
    return DatabaseContext(project=project, location=location, database=app.get("default_database"))
