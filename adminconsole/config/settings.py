# adminconsole/config/settings.py
"""
Console settings (pydantic-settings BaseSettings).

Environment variables with CONSOLE_ prefix, optional .env file.
"""
from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Admin console settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONSOLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Capability route map
    CAPABILITY_MAP_PATH: str = "configs/security/capability_map.yaml"
    CAPABILITY_RELOAD_SEC: int = 2
    CAPABILITY_BYPASS_PREFIXES: str = "/healthz,/metrics"

    # Identity
    AUTH_TEST_MODE: int = Field(default=0, description="Accept X-Console-User header; never in prod")
    AUDIT_LOG_ENABLE: int = 1

    def get_bypass_prefixes(self) -> List[str]:
        return [p.strip() for p in self.CAPABILITY_BYPASS_PREFIXES.split(",") if p.strip()]

    def is_prod(self) -> bool:
        return self.ENV.lower() == "prod"

    def is_dev(self) -> bool:
        return self.ENV.lower() == "dev"

    def test_mode_enabled(self) -> bool:
        """Header identity is honoured only outside prod."""
        return bool(self.AUTH_TEST_MODE) and not self.is_prod()


settings = Settings()


__all__ = ["Settings", "settings"]
