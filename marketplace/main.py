import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace.api.router import api_router
from marketplace.api.routes.health import health_payload
from marketplace.config import settings
from marketplace.core.observability import (
    global_exception_handler,
    lifecycle_exception_handler,
    pool_status,
    request_logging_middleware,
)
from marketplace.database import POOL_CONFIG
from marketplace.services.lifecycle_errors import LifecycleError

# Arbitrary constant shared by every instance so only one of them migrates at a time.
MIGRATION_LOCK_KEY = 58204117

logger = logging.getLogger("marketplace")


def configure_logging() -> None:
    level = getattr(logging, str(settings.log_level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logger.setLevel(level)


def _normalized_prefix(prefix: str | None) -> str:
    if not prefix:
        return ""
    return prefix if prefix.startswith("/") else f"/{prefix}"


configure_logging()
api_prefix = _normalized_prefix(settings.api_prefix)
openapi_url = f"{api_prefix}/openapi.json" if settings.enable_docs else None

app = FastAPI(
    title=settings.app_name,
    version=settings.build_version or "dev",
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=openapi_url,
)
app.state.logger = logger

app.add_exception_handler(LifecycleError, lifecycle_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)
app.middleware("http")(request_logging_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)
app.include_router(api_router, prefix=api_prefix)


def _log_migration_target() -> None:
    from sqlalchemy.engine.url import make_url
    from sqlalchemy.exc import ArgumentError

    try:
        url = make_url(settings.database_url)
    except ArgumentError as exc:
        logger.warning("migrations_db_target_unparseable", extra={"error": str(exc)})
        return
    logger.info(
        "migrations_db_target",
        extra={"driver": url.drivername, "host": url.host, "database": url.database},
    )


def run_migrations() -> bool:
    """Apply `alembic upgrade head` on a dedicated connection.

    On Postgres an advisory lock keeps concurrent workers from migrating twice;
    the instance that loses the lock skips and returns False.
    """
    from alembic import command
    from alembic.config import Config
    from sqlalchemy import create_engine, text

    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    _log_migration_target()

    with create_engine(settings.database_url, future=True).connect() as connection:
        is_pg = connection.dialect.name == "postgresql"
        if is_pg:
            locked = connection.execute(
                text("select pg_try_advisory_lock(:k)"), {"k": MIGRATION_LOCK_KEY}
            ).scalar()
            if not locked:
                logger.info("migrations_skipped_lock_not_acquired")
                return False
        try:
            # alembic/env.py picks this connection up instead of opening its own.
            cfg.attributes["connection"] = connection
            command.upgrade(cfg, "head")
        finally:
            if is_pg:
                connection.execute(text("select pg_advisory_unlock(:k)"), {"k": MIGRATION_LOCK_KEY})
                connection.commit()
    logger.info("migrations_applied")
    return True


@app.on_event("startup")
def _startup():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "db_pool": POOL_CONFIG,
            "db_pool_status": pool_status(),
            "auto_archive_on_payment": settings.auto_archive_on_payment,
            "sales_quote_validity_days": settings.sales_quote_validity_days,
        },
    )
    if settings.run_migrations_on_start and settings.environment.lower() != "test":
        try:
            run_migrations()
        except Exception:
            # The API still serves reads on the existing schema; operators see the traceback.
            logger.exception("migrations_failed")


@app.get("/", tags=["meta"])
def root():
    return {"message": settings.app_name, "docs": openapi_url}


@app.get("/health", tags=["meta"])
@app.get("/healthz", tags=["meta"])
def healthcheck():
    return health_payload()
