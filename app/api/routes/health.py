"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from app.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, ReadyCheck]


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready():
    """
    Readiness check.

    Checks that the default rule configuration file can be loaded.
    """
    settings = get_settings()
    checks = {}
    all_ready = True

    try:
        if settings.config_path.exists():
            settings.load_defaults_config()
            checks["rules"] = ReadyCheck(status="ok")
        else:
            checks["rules"] = ReadyCheck(
                status="warning", message="defaults.yaml not found, using built-in rules"
            )
    except Exception as e:
        checks["rules"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    return ReadyResponse(ready=all_ready, checks=checks)
