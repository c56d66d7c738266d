from __future__ import annotations

from typing import Any, Dict, Optional

from google.cloud import bigquery

from ..app_model import DatabaseContext


def get_client(project: Optional[str], location: Optional[str] = None) -> bigquery.Client:
    return bigquery.Client(project=project, location=location)


def default_dataset(context: DatabaseContext) -> Optional[str]:
    if not context.database:
        return None
    if "." in context.database or not context.project:
        return context.database
    return f"{context.project}.{context.database}"


def build_job_config(
    context: DatabaseContext,
    use_query_cache: bool,
    labels: Dict[str, Any],
) -> bigquery.QueryJobConfig:
    config = bigquery.QueryJobConfig()
    config.use_query_cache = use_query_cache
    config.labels = dict(labels)
    dataset = default_dataset(context)
    if dataset:
        config.default_dataset = dataset
    return config
