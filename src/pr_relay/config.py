"""Configuration with 4-layer resolution: defaults -> YAML -> env -> CLI.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``PR_RELAY_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields (for example
``PR_RELAY_GITHUB__TOKEN`` or ``PR_RELAY_POLLING__INTERVAL_SECONDS``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class GitHubSettings(BaseModel):
    """GitHub API access."""

    token: SecretStr | None = None
    username: str | None = Field(
        default=None,
        description="Login of the automation actor that owns the forks.",
    )
    api_url: str = "https://api.github.com"
    web_url: str = "https://github.com"
    timeout: float = Field(
        default=10.0, gt=0.0, description="Per-request timeout in seconds."
    )
    retries: int = Field(default=3, ge=1, le=10)


class WebhookSettings(BaseModel):
    """Chat webhook delivery."""

    url: str | None = None
    text: str = "There was some activity on a Pull Request"
    username: str = "robot"
    timeout: float = Field(default=5.0, gt=0.0)


class PollingSettings(BaseModel):
    """Activity feed polling."""

    interval_seconds: float = Field(default=2.0, gt=0.0)
    overlap_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="How far each window reaches back before the last watermark.",
    )
    max_concurrent_records: int = Field(default=4, ge=1, le=64)


class SetupSettings(BaseModel):
    """Post-merge fork-and-branch workflow."""

    enabled: bool = True
    branch_name: str = Field(default="automation-setup", min_length=1)
    readiness_timeout_seconds: float = Field(default=60.0, gt=0.0)
    readiness_initial_backoff_seconds: float = Field(default=1.0, gt=0.0)
    readiness_max_backoff_seconds: float = Field(default=10.0, gt=0.0)
    git_timeout_seconds: float = Field(default=30.0, gt=0.0)
    git_executable: str = "git"


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or ``--config`` path)
        3. Environment variables (prefixed ``PR_RELAY_``)
        4. CLI overrides (applied programmatically after loading)
    """

    model_config = SettingsConfigDict(
        env_prefix="PR_RELAY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    github: GitHubSettings = Field(default_factory=GitHubSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    setup: SetupSettings = Field(default_factory=SetupSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings (CLI) > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and CLI overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value CLI overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None

    def missing_for_watch(self) -> list[str]:
        """Return the dotted names of settings ``watch`` cannot run without."""
        missing: list[str] = []
        if self.github.token is None or not self.github.token.get_secret_value():
            missing.append("github.token")
        if not self.webhook.url:
            missing.append("webhook.url")
        return missing


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
