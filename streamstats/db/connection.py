"""
Pooled Postgres connections.

The pool is sized from the ``database`` settings section when first used.
Batch scoring runs its workers concurrently, each holding one connection for
the span of a query, so the default ceiling is the worker count plus two for
the API and the aggregation jobs. STREAMSTATS_DB_POOL_* environment variables
override the settings file.
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

import psycopg
from psycopg_pool import ConnectionPool

from streamstats.app_settings import database_settings

logger = logging.getLogger(__name__)

POOL_NAME = "streamstats"

_ENV_OVERRIDES = {
    "min_size": ("STREAMSTATS_DB_POOL_MIN", int),
    "max_size": ("STREAMSTATS_DB_POOL_MAX", int),
    "timeout": ("STREAMSTATS_DB_POOL_TIMEOUT", float),
    "max_idle": ("STREAMSTATS_DB_POOL_MAX_IDLE", float),
}

_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


@dataclass(frozen=True)
class PoolConfig:
    min_size: int
    max_size: int
    timeout: float
    max_idle: float


def pool_config(
    settings: dict[str, Any] | None = None,
    environ: Mapping[str, str] = os.environ,
) -> PoolConfig:
    database = database_settings(settings)
    values: dict[str, Any] = {
        "min_size": database["pool_min"],
        "max_size": database["pool_max"],
        "timeout": database["pool_timeout"],
        "max_idle": database["pool_max_idle"],
    }
    for key, (variable, cast) in _ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw:
            values[key] = cast(raw)

    values["min_size"] = max(1, values["min_size"])
    values["max_size"] = max(values["min_size"], values["max_size"])
    return PoolConfig(**values)


def _database_url() -> str:
    url = os.environ.get("STREAMSTATS_DATABASE_URL")
    if not url:
        raise RuntimeError("STREAMSTATS_DATABASE_URL is not set.")
    return url


def _create_pool() -> ConnectionPool:
    config = pool_config()
    pool = ConnectionPool(
        conninfo=_database_url(),
        name=POOL_NAME,
        min_size=config.min_size,
        max_size=config.max_size,
        timeout=config.timeout,
        max_idle=config.max_idle,
        open=True,
        check=ConnectionPool.check_connection,
    )
    logger.info(
        f"Database connection pool '{POOL_NAME}' opened "
        f"(min={config.min_size}, max={config.max_size}, timeout={config.timeout}s)"
    )
    return pool


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is not None:
        return _pool

    with _pool_lock:
        if _pool is None:
            _pool = _create_pool()
        return _pool


def close_pool() -> None:
    """Close the connection pool. Called at shutdown."""
    global _pool
    with _pool_lock:
        if _pool is None:
            return
        try:
            _pool.close()
            logger.info(f"Database connection pool '{POOL_NAME}' closed")
        except psycopg.Error as e:
            logger.warning(f"Error closing connection pool: {e}")
        _pool = None


atexit.register(close_pool)


@contextmanager
def get_connection() -> Iterator[psycopg.Connection]:
    """
    Borrow a connection from the pool.

    An open transaction is committed when the block exits normally and rolled
    back when it raises.
    """
    with _get_pool().connection() as conn:
        yield conn


def get_pool_stats() -> dict:
    """Pool counters for the health endpoint."""
    pool = _get_pool()
    stats = pool.get_stats()
    return {
        "name": POOL_NAME,
        "pool_size": stats.get("pool_size", 0),
        "pool_available": stats.get("pool_available", 0),
        "requests_waiting": stats.get("requests_waiting", 0),
        "pool_min": pool.min_size,
        "pool_max": pool.max_size,
    }
