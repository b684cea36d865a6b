# schoolchat/routes/health.py
"""
Health check endpoints with upstream API reachability.
"""

import time

from fastapi import APIRouter

from schoolchat.config import settings
from schoolchat.services.api_client import school_api_client
from schoolchat.services.session_registry import session_registry

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "schoolchat"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: the school API must answer.
    """
    checks = {}

    t0 = time.time()
    api_ok = await school_api_client.ping()
    checks["school_api"] = {
        "ok": api_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
        "base_url": school_api_client.base_url,
    }

    checks["realtime"] = {
        "enabled": settings.REALTIME_ENABLED,
        "url": settings.websocket_url() if settings.REALTIME_ENABLED else None,
    }
    checks["sessions"] = {"open": len(session_registry)}

    return {"overall_ok": api_ok, "checks": checks, "timestamp": time.time()}
