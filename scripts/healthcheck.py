"""
Container health check for the import API.

Default mode probes the HTTP ``/health`` endpoint. ``--db`` instead opens a
database session and verifies every ORM table exists, which is what the
migration job waits on before the API container starts.
"""

from __future__ import annotations

import argparse
import os
from urllib.error import URLError
from urllib.request import urlopen


def _check_http() -> int:
    port = os.getenv("PORT", "8000")
    path = os.getenv("HEALTHCHECK_PATH", "/health")
    url = f"http://127.0.0.1:{port}{path}"

    try:
        with urlopen(url, timeout=2) as response:
            return 0 if 200 <= response.status < 400 else 1
    except (URLError, TimeoutError, ValueError):
        return 1


def _check_database() -> int:
    from sqlalchemy import inspect as sa_inspect, text
    from sqlalchemy.exc import SQLAlchemyError

    import db.models  # noqa: F401 (registers all ORM models on Base.metadata)
    from db.base import Base
    from db.config import load_env_files
    from db.session import SessionLocal, get_engine

    load_env_files()
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
        actual = set(sa_inspect(get_engine()).get_table_names())
    except (SQLAlchemyError, RuntimeError):
        return 1

    return 0 if set(Base.metadata.tables.keys()) <= actual else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Health check for the identity import service.")
    parser.add_argument("--db", action="store_true", help="Check database connectivity and schema instead of HTTP.")
    args = parser.parse_args()
    return _check_database() if args.db else _check_http()


if __name__ == "__main__":
    raise SystemExit(main())
