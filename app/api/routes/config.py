"""Configuration API endpoints."""

from fastapi import APIRouter

from app.config import get_settings
from app.config.rules import RULE_CONFIG_VERSION

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("/rules")
async def get_rule_config():
    """Get the default allocation rule configuration."""
    settings = get_settings()
    rules = settings.default_rule_config()
    return {
        "version": RULE_CONFIG_VERSION,
        "source": str(settings.config_path),
        "rules": rules.to_dict(),
    }
