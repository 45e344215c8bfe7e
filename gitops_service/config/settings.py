"""
Configuration system using Pydantic for type-safe settings management.

Settings come from environment variables (``GITOPS_`` prefix, ``__`` as the
nesting delimiter, e.g. ``GITOPS_GITHUB__TOKEN``) or from a YAML file with
``${VAR}`` interpolation via ``ServiceSettings.from_yaml``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from gitops_service.exceptions import ConfigurationError

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_PROJECTS_DIR = PACKAGE_DIR / "templates" / "projects"
DEFAULT_AGENTS_DIR = PACKAGE_DIR / "review"


class GitHubConfig(BaseModel):
    """GitHub repository the service manages branches and PRs in."""

    token: SecretStr = Field(..., description="Token with repo + workflow scopes")
    owner: str = Field(..., description="Repository owner/organization")
    repo: str = Field(..., description="Repository name")
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")


class QueueConfig(BaseModel):
    """Limits for the in-process publish queue."""

    concurrency: int = Field(default=5, ge=1, description="Maximum simultaneously running tasks")
    max_depth: int = Field(default=50, ge=0, description="Maximum tasks waiting for a slot")
    retry_after: int = Field(default=5, ge=1, description="Retry-After seconds sent with 503 responses")


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address")  # nosec B104
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    api_key: SecretStr | None = Field(default=None, description="Shared secret expected in x-api-key")
    incoming_dir: str = Field(default="/mnt/incoming", description="Root that every pushed dir must live under")
    exclude: list[str] = Field(
        default_factory=lambda: [".git", "node_modules", "__pycache__", ".DS_Store"],
        description="File and directory names skipped when reading a pushed dir",
    )


class BootstrapConfig(BaseModel):
    """Where the automation files committed onto ``{project}-master`` come from."""

    projects_dir: Path = Field(default=DEFAULT_PROJECTS_DIR, description="Per-project workflow templates")
    agents_dir: Path = Field(default=DEFAULT_AGENTS_DIR, description="Code-review agent sources")
    root_commit_message: str = Field(
        default="chore(gitops): bootstrap {project}",
        description="Message of the root commit of {project}-master",
    )


class ServiceSettings(BaseSettings):
    """Main gitops-service settings."""

    model_config = SettingsConfigDict(
        env_prefix="GITOPS_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    github: GitHubConfig
    queue: QueueConfig = Field(default_factory=QueueConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    log_level: str = Field(default="INFO", description="Minimum log level")

    @classmethod
    def from_env(cls) -> ServiceSettings:
        """Load settings from environment variables only.

        Raises:
            ConfigurationError: If required values are missing or invalid
        """
        try:
            return cls()
        except Exception as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str) -> ServiceSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default}.

        Args:
            config_path: Path to YAML configuration file

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
