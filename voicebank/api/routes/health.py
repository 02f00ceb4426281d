"""
Health Check Endpoints.
System health and readiness checks.
"""

from datetime import datetime
from fastapi import APIRouter, Request

from voicebank.config import get_settings
from voicebank.db.database import is_initialized

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.APP_VERSION
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness check - the ledger is reachable and the flow manager runs.
    Voice biometrics and the Groq classifier are optional and reported
    separately.
    """
    checks = {
        "database": is_initialized(),
        "flow_manager": hasattr(request.app.state, "flow_manager"),
    }

    optional = {
        "voice_biometrics": False,
        "intent_classifier": "unavailable",
    }
    if hasattr(request.app.state, "biometrics"):
        optional["voice_biometrics"] = request.app.state.biometrics.available
    if hasattr(request.app.state, "intent_classifier"):
        optional["intent_classifier"] = (
            "groq" if request.app.state.intent_classifier.is_initialized else "keywords"
        )

    active_flows = 0
    if checks["flow_manager"]:
        active_flows = await request.app.state.flow_manager.get_active_flow_count()

    all_ready = all(checks.values())

    return {
        "status": "ready" if all_ready else "not_ready",
        "checks": checks,
        "optional": optional,
        "active_flows": active_flows,
        "timestamp": datetime.utcnow().isoformat()
    }
