"""Flatten backend rows of ``{key, value}`` cells into records.

``[[{"key": "x", "value": "1"}, {"key": "y", "value": "2"}]]`` becomes
``[{"x": "1", "y": "2"}]``. Nothing in here raises: a cell that cannot be
read is skipped and a column it would have filled stays ``None``.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


def _cell_pair(cell: Any) -> Optional[Tuple[str, Any]]:
    if isinstance(cell, Mapping):
        key = cell.get("key")
        value = cell.get("value")
    elif isinstance(cell, (list, tuple)) and len(cell) == 2:
        key, value = cell
    else:
        key = getattr(cell, "key", None)
        value = getattr(cell, "value", None)
    if not isinstance(key, str) or not key:
        return None
    return key, value


def _cells(row: Any) -> Iterable[Tuple[str, Any]]:
    if row is None or isinstance(row, (str, bytes)):
        return []
    if isinstance(row, Mapping):
        return [(key, value) for key, value in row.items() if isinstance(key, str) and key]
    try:
        cells = list(row)
    except TypeError:
        return []
    pairs = []
    for cell in cells:
        pair = _cell_pair(cell)
        if pair is not None:
            pairs.append(pair)
    return pairs


def discover_columns(row: Any) -> List[str]:
    columns: List[str] = []
    seen = set()
    for key, _ in _cells(row):
        if key not in seen:
            seen.add(key)
            columns.append(key)
    return columns


def project_row(row: Any, columns: List[str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in _cells(row):
        values[key] = value
    return {column: values.get(column) for column in columns}
