"""
Shared configuration management for the policy decision service.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("POLICY_ENV", "NODE_ENV"))
    log_level: str = Field(default="info", validation_alias=AliasChoices("POLICY_LOG_LEVEL", "LOG_LEVEL"))

    # Redis policy cache
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("POLICY_REDIS_URL", "REDIS_URL"),
    )
    policy_cache_ttl: int = Field(
        default=300,
        ge=1,
        validation_alias=AliasChoices("POLICY_CACHE_TTL", "CEDAR_POLICY_CACHE_TTL"),
    )
    policy_cache_prefix: str = Field(default="cedar_policy", validation_alias="POLICY_CACHE_PREFIX")
    redis_socket_timeout: float = Field(default=5.0, gt=0, validation_alias="POLICY_REDIS_SOCKET_TIMEOUT")

    # Observability
    enable_console_logging: bool = Field(default=False, validation_alias="POLICY_ENABLE_CONSOLE_LOGGING")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
