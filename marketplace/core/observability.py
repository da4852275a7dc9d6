from __future__ import annotations

import logging
import os
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Deque

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SATimeoutError
from starlette.responses import Response

from marketplace.services.lifecycle_errors import LifecycleError

_APP_START_MONOTONIC = time.monotonic()

_LATENCY_WINDOW = int(os.getenv("LATENCY_METRICS_WINDOW", "200"))
_LATENCY_LOG_EVERY = int(os.getenv("LATENCY_METRICS_LOG_EVERY", "50"))
_LATENCY_LOCK = Lock()
_LATENCY_BUCKETS: dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=_LATENCY_WINDOW))

_SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "2000"))
_QUIET_PATHS = frozenset({"/health", "/healthz"})

# (method, path suffix, label) for the routes whose latency percentiles are tracked.
_CRITICAL_ENDPOINTS: tuple[tuple[str, str, str], ...] = (
    ("GET", "/rfqs", "rfqs.list"),
    ("GET", "/sales-orders", "sales_orders.list"),
    ("GET", "/purchase-orders", "purchase_orders.list"),
    ("POST", "/convert", "sales_quotes.convert"),
    ("POST", "/status", "sales_orders.advance"),
    ("POST", "/payment", "sales_orders.payment"),
)


def _critical_label_for(method: str, path: str) -> str | None:
    for m, suffix, label in _CRITICAL_ENDPOINTS:
        if method == m and path.endswith(suffix):
            return label
    return None


def pool_status() -> str | None:
    from marketplace.database import engine

    status = getattr(engine.pool, "status", None)
    return status() if callable(status) else None


def _app_logger(request: Request) -> logging.Logger:
    return getattr(request.app.state, "logger", None) or logging.getLogger("marketplace")


def request_id_for(request: Request) -> str:
    """The correlation id of the current request.

    Taken from the inbound `X-Request-ID` header when present, otherwise minted
    once and cached on `request.state` so middleware and handlers agree.
    """
    rid = getattr(request.state, "request_id", None)
    if rid:
        return rid
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    return rid


def _request_fields(request: Request, **more: Any) -> dict[str, Any]:
    return {
        "request_id": request_id_for(request),
        "method": request.method,
        "path": request.url.path,
        **more,
    }


def _percentile(values: list[float], pct: float) -> float:
    if not values:
        return 0.0
    s = sorted(values)
    k = max(0, min(int(round((pct / 100.0) * (len(s) - 1))), len(s) - 1))
    return float(s[k])


def _record_latency(label: str | None, duration_ms: float, logger: logging.Logger) -> None:
    if not label:
        return
    with _LATENCY_LOCK:
        bucket = _LATENCY_BUCKETS[label]
        bucket.append(float(duration_ms))
        if len(bucket) < _LATENCY_LOG_EVERY or len(bucket) % _LATENCY_LOG_EVERY:
            return
        values = list(bucket)
    logger.info(
        "http_latency",
        extra={
            "endpoint": label,
            "p50_ms": round(_percentile(values, 50), 2),
            "p95_ms": round(_percentile(values, 95), 2),
            "p99_ms": round(_percentile(values, 99), 2),
            "window": len(values),
        },
    )


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _APP_START_MONOTONIC)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


async def lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Render typed lifecycle failures as structured JSON.

    Rejections are normal business outcomes and log at INFO; only
    operational bugs (5xx, e.g. an unresolvable duplicate) log as errors.
    """
    fields = _request_fields(
        request, code=exc.code, entity_type=exc.entity_type, entity_id=exc.entity_id
    )
    logger = _app_logger(request)
    if exc.status_code >= 500:
        logger.error("lifecycle_error", extra=fields)
    else:
        logger.info("lifecycle_rejected", extra=fields)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "code": exc.code,
            "entity_type": exc.entity_type,
            "entity_id": exc.entity_id,
            "request_id": fields["request_id"],
        },
        headers={"X-Request-ID": fields["request_id"]},
    )


def _cors_headers_for_error(request: Request) -> dict[str, str]:
    # Errors raised past CORSMiddleware would otherwise reach browsers as opaque CORS failures.
    origin = request.headers.get("origin")
    if not origin:
        return {}

    from marketplace.config import settings

    allowed = set(settings.cors_origins or [])
    if origin not in allowed and "*" not in allowed:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Vary": "Origin",
    }


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500 with a structured body; internals stay in the logs."""
    fields = _request_fields(request, exception_type=type(exc).__name__)
    _app_logger(request).exception("unhandled_exception", extra=fields)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error. Please try again later.",
            "code": "INTERNAL_SERVER_ERROR",
            "request_id": fields["request_id"],
        },
        headers={"X-Request-ID": fields["request_id"], **_cors_headers_for_error(request)},
    )


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Propagate X-Request-ID, time the request and log it (never bodies)."""
    request_id = request_id_for(request)
    logger = _app_logger(request)
    label = _critical_label_for(request.method, request.url.path)
    start = time.perf_counter()

    def elapsed_ms() -> float:
        return round((time.perf_counter() - start) * 1000.0, 2)

    try:
        response: Response = await call_next(request)
    except SATimeoutError as exc:
        duration_ms = elapsed_ms()
        _record_latency(label, duration_ms, logger)
        logger.error(
            "db_pool_timeout",
            extra=_request_fields(
                request, duration_ms=duration_ms, pool_status=pool_status(), error=str(exc)
            ),
        )
        raise
    except Exception:
        duration_ms = elapsed_ms()
        _record_latency(label, duration_ms, logger)
        logger.exception("http_request_failed", extra=_request_fields(request, duration_ms=duration_ms))
        raise

    duration_ms = elapsed_ms()
    _record_latency(label, duration_ms, logger)

    if duration_ms >= _SLOW_REQUEST_MS:
        logger.info(
            "slow_request",
            extra=_request_fields(request, duration_ms=duration_ms, pool_status=pool_status()),
        )

    if request.url.path not in _QUIET_PATHS:
        logger.info(
            "http_request",
            extra=_request_fields(
                request,
                endpoint=label,
                status_code=response.status_code,
                duration_ms=duration_ms,
            ),
        )

    response.headers.setdefault("X-Request-ID", request_id)
    return response
