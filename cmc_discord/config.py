"""Adapter configuration management."""

import logging

from pydantic_settings import BaseSettings
from pydantic import Field

logger = logging.getLogger("cmc_discord.config")


class AdapterSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Identity
    platform_name: str = Field(default="Discord", description="Platform name used in canonical IDs")

    # Registration handshake (seconds)
    discovery_timeout: float = Field(default=10.0, description="Per-module wait_for_module timeout")
    settle_grace_period: float = Field(default=10.0, description="Grace period before dispatch is allowed")

    # Replies
    continuation_ttl: float = Field(default=900.0, description="Lifetime of an interaction reply slot")
    attachment_fetch_timeout: float = Field(default=30.0, description="HTTP timeout for outbound attachments")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: str = Field(default="~/cmc_discord.log", description="Log file path (empty disables)")

    model_config = {"env_prefix": "CMC_DISCORD_", "env_file": ".env", "extra": "ignore"}


_TIMEOUT_FIELDS = ("discovery_timeout", "settle_grace_period", "continuation_ttl", "attachment_fetch_timeout")


def load_settings() -> AdapterSettings:
    """Load settings from environment."""
    settings = AdapterSettings()

    # Non-positive timeouts would flip the barrier before discovery can answer
    for name in _TIMEOUT_FIELDS:
        value = getattr(settings, name)
        if value <= 0:
            default = AdapterSettings.model_fields[name].default
            logger.warning(f"{name}={value} is not positive, using default {default}")
            setattr(settings, name, default)

    return settings
