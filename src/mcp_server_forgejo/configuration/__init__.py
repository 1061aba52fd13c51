"""Configuration module for MCP Forgejo Server.

Configuration is held in a frozen Pydantic model so every value is validated
once at startup and never changes while the server runs.

Environment variable binding:
    ```bash
    export FORGEJO_URL=https://codeberg.org
    export FORGEJO_TOKEN=xxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx
    export MCP_CONTEXT_CACHE_TTL=300
    export MCP_AUTH_CACHE_TTL=600
    export MCP_MAX_CONCURRENCY=8
    export MCP_TOOL_TIMEOUT=30
    ```

Usage examples:
    >>> from mcp_server_forgejo.configuration import load_config_from_env
    >>> config = load_config_from_env()
    >>> config.max_concurrency
    8

    >>> from mcp_server_forgejo.configuration import create_test_config
    >>> config = create_test_config(tool_timeout=0.5, token="test_token_0123456789")

Security considerations:
    - The credential is stored as ``SecretStr`` and registered for redaction
      as soon as it is loaded.
    - Placeholder credentials (``YOUR_TOKEN_HERE``, ``CHANGEME``...) count as absent.
"""

from .server_config import (
    DEFAULT_FORGEJO_URL,
    ConfigurationError,
    ServerConfig,
    create_test_config,
    is_placeholder_token,
    load_config_from_env,
    load_environment_variables,
)

__all__ = [
    "DEFAULT_FORGEJO_URL",
    "ConfigurationError",
    "ServerConfig",
    "create_test_config",
    "is_placeholder_token",
    "load_config_from_env",
    "load_environment_variables",
]
