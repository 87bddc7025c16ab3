"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app save games?)
- /metrics - Application metrics for monitoring
"""

import json
import logging
import os
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_registry = None
_store = None


def set_health_dependencies(registry=None, store=None):
    """Set dependencies for health checks."""
    global _registry, _store
    _registry = registry
    _store = store


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Checks that both storage directories exist and are writable.
    Returns 503 if either is not.
    """
    checks = {}
    overall_healthy = True

    if _store is not None:
        for name, directory in (("config_dir", _store.config_dir), ("state_dir", _store.state_dir)):
            if directory.is_dir() and os.access(directory, os.W_OK):
                checks[name] = {"status": "ok"}
            else:
                logger.warning(f"Storage health check failed for {directory}")
                checks[name] = {"status": "error", "message": f"{directory} is not writable"}
                overall_healthy = False
    else:
        checks["storage"] = {"status": "not_configured"}

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose game and connection counts for monitoring."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _registry is not None:
        games = _registry.games.values()
        metrics_data.update({
            "games": len(_registry.games),
            "games_by_status": _registry.status_counts(),
            "players_connected": sum(len(g.connected_players()) for g in games),
            "open_connections": len(_registry.connections),
        })

    return metrics_data
