"""Server configuration model and environment loading."""

import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from ..redaction import register_secret

logger = logging.getLogger(__name__)

DEFAULT_FORGEJO_URL = "https://codeberg.org"

TOKEN_ENV_VARS = ("FORGEJO_TOKEN", "GITEA_TOKEN")

# Values that mean "not configured yet"
TOKEN_PLACEHOLDERS = ["", "YOUR_TOKEN_HERE", "REPLACE_ME", "TODO", "CHANGEME"]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when environment-sourced configuration is invalid."""


def is_placeholder_token(token: Optional[str]) -> bool:
    """Check if a credential value should be treated as absent."""
    if token is None:
        return True
    return token.strip() in TOKEN_PLACEHOLDERS


class ServerConfig(BaseModel):
    """Validated settings consumed by the dispatch core.

    Both cache TTLs are configured independently: rotating the credential
    invalidates only the auth cache.
    """

    model_config = ConfigDict(frozen=True)

    forgejo_url: str = DEFAULT_FORGEJO_URL
    token: Optional[SecretStr] = None

    context_cache_ttl: float = Field(default=300.0, gt=0)
    auth_cache_ttl: float = Field(default=300.0, gt=0)
    cache_max_entries: int = Field(default=100, ge=1)

    tool_timeout: float = Field(default=30.0, gt=0)
    auth_timeout: float = Field(default=5.0, gt=0)
    max_concurrency: int = Field(default=8, ge=1)
    max_frame_bytes: int = Field(default=4 * 1024 * 1024, ge=1024)

    remote_name: str = "origin"
    extra_hosts: Tuple[str, ...] = ()

    repository: Optional[Path] = None
    log_level: str = "INFO"

    @field_validator("forgejo_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("forgejo_url must start with http:// or https://")
        return value

    @field_validator("token", mode="before")
    @classmethod
    def _drop_placeholder(cls, value):
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if is_placeholder_token(value):
            return None
        return value.strip()

    @field_validator("extra_hosts", mode="before")
    @classmethod
    def _split_hosts(cls, value):
        if isinstance(value, str):
            return tuple(part.strip().lower() for part in value.split(",") if part.strip())
        return tuple(host.lower() for host in value)

    @field_validator("remote_name")
    @classmethod
    def _check_remote(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("remote_name cannot be empty")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return value

    @property
    def has_token(self) -> bool:
        return self.token is not None

    def token_value(self) -> Optional[str]:
        """Raw credential; only the auth validator and API client should call this."""
        return self.token.get_secret_value() if self.token is not None else None


def load_environment_variables(repository_path: Optional[Path] = None) -> List[str]:
    """Load ``.env`` files with proper precedence.

    Order of precedence:
    1. System environment variables
    2. Project-specific .env file (current working directory)
    3. Repository-specific .env file (if repository path provided)

    Existing variables are never overridden, except credentials that are empty
    or a known placeholder.

    Returns:
        The ``.env`` files that were loaded.
    """
    loaded_files: List[str] = []
    candidates = [Path.cwd() / ".env"]
    if repository_path:
        candidates.append(repository_path / ".env")

    for env_file in candidates:
        if not env_file.exists() or str(env_file) in loaded_files:
            continue
        try:
            tokens_before = {name: os.getenv(name) for name in TOKEN_ENV_VARS}
            load_dotenv(env_file, override=False)

            env_values = dotenv_values(env_file)
            for name, before in tokens_before.items():
                if is_placeholder_token(before) and not is_placeholder_token(env_values.get(name)):
                    os.environ[name] = env_values[name]

            loaded_files.append(str(env_file))
            logger.info(f"Loaded environment variables from {env_file}")
        except OSError as e:
            logger.warning(f"Failed to load .env file {env_file}: {e}")

    if not loaded_files:
        logger.debug("No .env files found, using system environment variables only")
    return loaded_files


def _settings_from_env(env: Mapping[str, str]) -> Dict[str, object]:
    values: Dict[str, object] = {}

    def take(field: str, *names: str) -> None:
        for name in names:
            raw = env.get(name)
            if raw is not None and raw.strip() != "":
                values[field] = raw.strip()
                return

    take("forgejo_url", "FORGEJO_URL", "GITEA_URL")
    take("context_cache_ttl", "MCP_CONTEXT_CACHE_TTL", "MCP_CACHE_TTL")
    take("auth_cache_ttl", "MCP_AUTH_CACHE_TTL", "MCP_CACHE_TTL")
    take("cache_max_entries", "MCP_CACHE_MAX_ENTRIES")
    take("tool_timeout", "MCP_TOOL_TIMEOUT")
    take("auth_timeout", "MCP_AUTH_TIMEOUT")
    take("max_concurrency", "MCP_MAX_CONCURRENCY")
    take("max_frame_bytes", "MCP_MAX_FRAME_BYTES")
    take("remote_name", "FORGEJO_REMOTE_NAME")
    take("extra_hosts", "FORGEJO_EXTRA_HOSTS")
    take("log_level", "LOG_LEVEL")

    for name in TOKEN_ENV_VARS:
        raw = env.get(name)
        if not is_placeholder_token(raw):
            values["token"] = raw
            break
    return values


def load_config_from_env(
    repository: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    load_dotenv_files: bool = True,
) -> ServerConfig:
    """Build a :class:`ServerConfig` from the process environment.

    A missing credential is a valid state; authenticated tools then fail with
    ``AuthMissing``.

    Raises:
        ConfigurationError: If a value is present but invalid.
    """
    if env is None:
        if load_dotenv_files:
            load_environment_variables(repository)
        env = os.environ

    values = _settings_from_env(env)
    if repository is not None:
        values["repository"] = repository

    try:
        config = ServerConfig.model_validate(values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from None

    register_secret(config.token_value())
    if config.has_token:
        logger.debug("Forgejo credential found in environment")
    else:
        logger.info("No Forgejo credential configured; authenticated tools will fail with AuthMissing")
    return config


def create_test_config(**overrides) -> ServerConfig:
    """Configuration tuned for tests: short timeouts and small caches."""
    values: Dict[str, object] = {
        "forgejo_url": "https://forgejo.example.com",
        "context_cache_ttl": 60.0,
        "auth_cache_ttl": 60.0,
        "tool_timeout": 2.0,
        "auth_timeout": 1.0,
        "max_concurrency": 4,
        "cache_max_entries": 16,
    }
    values.update(overrides)
    config = ServerConfig.model_validate(values)
    register_secret(config.token_value())
    return config
