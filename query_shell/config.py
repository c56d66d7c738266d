from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml
from platformdirs import user_config_dir

DEFAULT_CONFIG: Dict[str, Any] = {
    "app": {
        "default_project": None,
        "default_location": None,
        "default_database": None,
        "page_size": 1000,
        "polling": {
            "interval_seconds": 1.5,
            "initial_wait_seconds": 0.0,
            "max_transport_retries": 3,
            "backoff_base_seconds": 0.5,
            "backoff_max_seconds": 8.0,
        },
        "bq": {
            "use_query_cache": False,
            "labels": {
                "app": "query-shell",
            },
        },
        "logging": {
            "level": "WARNING",
        },
    }
}


@dataclass
class PollingSettings:
    interval_seconds: float = 1.5
    initial_wait_seconds: float = 0.0
    max_transport_retries: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0


class ConfigLoader:
    def __init__(self, config_path: Optional[str] = None) -> None:
        if config_path is None:
            self.config_dir = user_config_dir("query_shell")
            self.config_path = f"{self.config_dir}/config.yaml"
        else:
            self.config_dir = os.path.dirname(config_path) or "."
            self.config_path = config_path
        self._config = None

    def load(self) -> Dict[str, Any]:
        if self._config is not None:
            return self._config
        data = copy.deepcopy(DEFAULT_CONFIG)
        try:
            with open(self.config_path, "r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
            if not isinstance(loaded, dict):
                raise ValueError("config root must be a mapping")
            data = self._merge(data, loaded)
        except FileNotFoundError:
            self._ensure_default_written(data)
        except Exception:
            self._ensure_default_written(data)
        self._config = self._validate(data)
        return self._config

    def _ensure_default_written(self, data: Dict[str, Any]) -> None:
        os.makedirs(self.config_dir, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False)

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = self._merge(base[key], value)
            else:
                base[key] = value
        return base

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        def lookup(path: str) -> Any:
            current = data
            for part in path.split("."):
                current = current[part]
            return current

        def safe_int(path: str, default: int) -> int:
            try:
                current = lookup(path)
            except Exception:
                return default
            if isinstance(current, int) and not isinstance(current, bool) and current >= 0:
                return current
            return default

        def safe_float(path: str, default: float) -> float:
            try:
                current = lookup(path)
            except Exception:
                return default
            if isinstance(current, (int, float)) and not isinstance(current, bool) and current >= 0:
                return float(current)
            return default

        app = data["app"]
        if not isinstance(app.get("polling"), dict):
            app["polling"] = copy.deepcopy(DEFAULT_CONFIG["app"]["polling"])
        if not isinstance(app.get("logging"), dict):
            app["logging"] = copy.deepcopy(DEFAULT_CONFIG["app"]["logging"])

        app["page_size"] = safe_int("app.page_size", 1000) or 1000
        app["polling"]["interval_seconds"] = safe_float("app.polling.interval_seconds", 1.5)
        app["polling"]["initial_wait_seconds"] = safe_float("app.polling.initial_wait_seconds", 0.0)
        app["polling"]["max_transport_retries"] = safe_int("app.polling.max_transport_retries", 3)
        app["polling"]["backoff_base_seconds"] = safe_float("app.polling.backoff_base_seconds", 0.5)
        app["polling"]["backoff_max_seconds"] = safe_float("app.polling.backoff_max_seconds", 8.0)
        level = app["logging"].get("level")
        app["logging"]["level"] = level.upper() if isinstance(level, str) and level else "WARNING"
        return data

    def as_json(self) -> str:
        return json.dumps(self.load())


def polling_settings(config: Dict[str, Any]) -> PollingSettings:
    polling = config["app"]["polling"]
    return PollingSettings(
        interval_seconds=polling["interval_seconds"],
        initial_wait_seconds=polling["initial_wait_seconds"],
        max_transport_retries=polling["max_transport_retries"],
        backoff_base_seconds=polling["backoff_base_seconds"],
        backoff_max_seconds=polling["backoff_max_seconds"],
    )
