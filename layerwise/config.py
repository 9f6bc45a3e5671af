"""Configuration management for layerwise.

Uses Pydantic Settings for environment-based configuration. Command-line
flags override the values loaded here.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models import Severity


class LintConfig(BaseSettings):
    """Dockerfile lint configuration."""

    disabled_rules: List[str] = Field(default_factory=list, description="Rule ids to skip")
    min_severity: Severity = Field(default=Severity.INFO, description="Drop findings below this severity")
    fail_on: Severity = Field(default=Severity.WARNING, description="Exit non-zero at or above this severity")

    model_config = SettingsConfigDict(env_prefix="LAYERWISE_LINT_")

    @field_validator("disabled_rules")
    @classmethod
    def normalize_rule_ids(cls, v: List[str]) -> List[str]:
        """Upper-case rule ids so LW001 and lw001 are the same rule."""
        return [rule.strip().upper() for rule in v if rule.strip()]


class ContextConfig(BaseSettings):
    """Build context scan configuration."""

    ignore_file: str = Field(default=".dockerignore", description="Ignore file name in the context root")
    max_context_bytes: int = Field(default=50 * 1024 * 1024, description="Size budget for the context")
    heavy_path_min_bytes: int = Field(default=0, description="Report heavy paths at or above this size")
    top_entries: int = Field(default=10, description="Largest entries to list")

    model_config = SettingsConfigDict(env_prefix="LAYERWISE_CONTEXT_")

    @field_validator("max_context_bytes", "top_entries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate sizes and counts are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v


class CacheConfig(BaseSettings):
    """Layer cache planning configuration."""

    manifest_path: str = Field(default=".layerwise/cache-manifest.json", description="Cache manifest location")
    read_chunk_bytes: int = Field(default=1024 * 1024, description="Chunk size when hashing sources")

    model_config = SettingsConfigDict(env_prefix="LAYERWISE_CACHE_")


class Config(BaseSettings):
    """Main configuration."""

    # Sub-configurations
    lint: LintConfig = Field(default_factory=LintConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    dockerfile: str = Field(default="Dockerfile", description="Dockerfile name relative to the context")
    log_level: str = Field(default="WARNING", description="Log level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")
    tracing_enabled: bool = Field(default=False, description="Export spans to the console")

    model_config = SettingsConfigDict(env_prefix="LAYERWISE_", env_file=".env", env_file_encoding="utf-8", extra="ignore")


_config_instance: Config | None = None


def get_config() -> Config:
    """Get or create configuration instance.

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next call reloads the environment."""
    global _config_instance
    _config_instance = None
