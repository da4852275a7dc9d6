from fastapi import APIRouter

from marketplace.config import settings
from marketplace.core.observability import uptime_seconds, utc_now_iso

router = APIRouter(prefix="/health", tags=["health"])


def health_payload() -> dict:
    """Liveness body shared by `/health`, `/healthz` and `{prefix}/health`.

    Monitoring parses these keys; add fields, never rename them.
    """
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": settings.build_version,
    }


@router.get("", summary="Healthcheck")
def healthcheck():
    return health_payload()
