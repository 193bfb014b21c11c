"""Application settings and configuration management."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.rules import RuleConfig

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Allocation
    allocation_verbose_logs: bool = Field(
        default=False,
        description="Log every eligibility check (forces verbose_logs on all runs)",
    )

    # Paths
    config_path: Path = Field(
        default=Path(__file__).parent / "defaults.yaml",
        description="Path to defaults.yaml configuration",
    )

    def load_defaults_config(self) -> dict[str, Any]:
        """Load the defaults.yaml configuration file."""
        if self.config_path.exists():
            with open(self.config_path) as f:
                return yaml.safe_load(f) or {}
        return {}

    def default_rule_config(self) -> RuleConfig:
        """Tournament-independent rule defaults from defaults.yaml."""
        allocation = self.load_defaults_config().get("allocation", {})
        rules = RuleConfig.from_mapping(allocation.get("rules"))
        if self.allocation_verbose_logs and not rules.verbose_logs:
            rules = rules.merged({"verbose_logs": True})
        return rules


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
