from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_STATE_DIR = Path(
    os.environ.get("STREAMSTATS_STATE_DIR", REPO_ROOT / ".streamstats")
)
SETTINGS_PATH = Path(
    os.environ.get("STREAMSTATS_SETTINGS_PATH", DEFAULT_STATE_DIR / "settings.json")
)

METRICS_POLICIES = ("raw", "aggregated", "auto")


def _default_settings() -> dict[str, Any]:
    return {
        "aggregation": {
            "timezone": "UTC",
            "upsert_batch_size": 500,
        },
        "scoring": {
            "metrics_source": "auto",
            "batch_workers": 4,
            "all_time_start": "2020-01-01",
            "potential_model": {
                "genre_fit": 0.8,
                "market_position": 0.75,
                "demographic_appeal": 0.7,
            },
        },
        "database": {
            "pool_min": 1,
            "pool_max": None,
            "pool_timeout": 30,
            "pool_max_idle": 300,
        },
        "cache": {
            "top_artists_ttl": 300,
            "max_entries": 500,
        },
    }


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _deep_merge(base[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Path | None = None) -> dict[str, Any]:
    path = path or SETTINGS_PATH
    defaults = _default_settings()
    if not path.exists():
        return defaults
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return defaults
    if not isinstance(data, dict):
        return defaults
    return _deep_merge(defaults, data)


def update_settings(patch: dict[str, Any], path: Path | None = None) -> dict[str, Any]:
    path = path or SETTINGS_PATH
    current = load_settings(path)
    updated = _deep_merge(current, patch)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(updated, indent=2, sort_keys=True, ensure_ascii=True) + "\n",
        encoding="utf-8",
    )
    return updated


def scoring_settings(settings: dict[str, Any] | None = None) -> dict[str, Any]:
    settings = settings or load_settings()
    scoring = settings.get("scoring") if isinstance(settings, dict) else None
    if not isinstance(scoring, dict):
        scoring = _default_settings()["scoring"]

    policy = scoring.get("metrics_source", "auto")
    if policy not in METRICS_POLICIES:
        policy = "auto"

    return {
        **scoring,
        "metrics_source": policy,
        "batch_workers": max(1, int(scoring.get("batch_workers") or 1)),
    }


def aggregation_settings(settings: dict[str, Any] | None = None) -> dict[str, Any]:
    settings = settings or load_settings()
    aggregation = settings.get("aggregation") if isinstance(settings, dict) else None
    if not isinstance(aggregation, dict):
        aggregation = _default_settings()["aggregation"]
    return {
        "timezone": aggregation.get("timezone") or "UTC",
        "upsert_batch_size": max(1, int(aggregation.get("upsert_batch_size") or 1)),
    }


def database_settings(settings: dict[str, Any] | None = None) -> dict[str, Any]:
    """Pool sizing; ``pool_max`` of None means one connection per scoring worker plus two."""
    settings = settings or load_settings()
    database = settings.get("database") if isinstance(settings, dict) else None
    if not isinstance(database, dict):
        database = _default_settings()["database"]

    pool_max = database.get("pool_max")
    if pool_max is None:
        pool_max = scoring_settings(settings)["batch_workers"] + 2
    pool_min = max(1, int(database.get("pool_min") or 1))

    return {
        "pool_min": pool_min,
        "pool_max": max(pool_min, int(pool_max)),
        "pool_timeout": float(database.get("pool_timeout") or 30),
        "pool_max_idle": float(database.get("pool_max_idle") or 300),
    }
