import os
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from marketplace.config import settings

db_url = str(settings.database_url)
is_postgres = db_url.startswith("postgresql")
is_sqlite = db_url.startswith("sqlite")


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _env_flag(key: str) -> bool:
    return os.getenv(key, "").strip().lower() in {"1", "true", "yes", "y", "on"}


def build_engine_options(url: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return `(create_engine kwargs, pool summary)` for a database URL.

    The pool summary is logged at startup; for SQLite every entry stays None.
    """
    options: dict[str, Any] = {"future": True}
    summary: dict[str, Any] = dict.fromkeys(
        ("pool_size", "max_overflow", "pool_timeout", "pool_recycle", "use_null_pool")
    )

    if url.startswith("sqlite"):
        # TestClient and uvicorn run sync endpoints on a threadpool.
        options["connect_args"] = {"check_same_thread": False}
        return options, summary

    if not url.startswith("postgresql"):
        return options, summary

    # psycopg3 connect_timeout is in seconds; fail fast when the database is down.
    options["connect_args"] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT_SECONDS", 10)}
    options["pool_pre_ping"] = True

    if _env_flag("DB_USE_NULL_POOL"):
        options["poolclass"] = NullPool
        summary["use_null_pool"] = "true"
        return options, summary

    pool = {
        "pool_size": _env_int("DB_POOL_SIZE", 5),
        "max_overflow": _env_int("DB_MAX_OVERFLOW", 10),
        "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30),
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800),
    }
    options.update(pool)
    summary.update(pool, use_null_pool="false")
    return options, summary


def enable_sqlite_foreign_keys(target_engine: Engine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless the pragma is set per connection."""

    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


_engine_options, POOL_CONFIG = build_engine_options(db_url)
engine = create_engine(db_url, **_engine_options)
enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        if is_postgres:
            timeout_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 5000)
            if timeout_ms > 0:
                db.execute(text(f"SET statement_timeout = {timeout_ms}"))
        yield db
    finally:
        db.close()
