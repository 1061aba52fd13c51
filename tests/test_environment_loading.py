"""Test environment variable loading and configuration validation."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_server_forgejo.configuration import (
    ConfigurationError,
    ServerConfig,
    load_config_from_env,
    load_environment_variables,
)
from mcp_server_forgejo.redaction import redact, registered_secrets

TOKEN = "0123456789abcdef0123456789abcdef01234567"


class TestEnvironmentLoading:
    """Test .env loading with various scenarios."""

    def test_load_environment_with_empty_token(self, tmp_path):
        """Test that an empty FORGEJO_TOKEN is overridden from .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text(f"FORGEJO_TOKEN={TOKEN}\nOTHER_VAR=test_value\n")

        # MCP clients often pass an empty variable through
        with patch.dict(os.environ, {"FORGEJO_TOKEN": ""}, clear=False):
            with patch("pathlib.Path.cwd", return_value=tmp_path):
                loaded = load_environment_variables()

                assert loaded == [str(env_file)]
                assert os.getenv("FORGEJO_TOKEN") == TOKEN
                assert os.getenv("OTHER_VAR") == "test_value"

    def test_load_environment_preserves_existing_tokens(self, tmp_path):
        """Test that existing non-empty tokens are preserved."""
        env_file = tmp_path / ".env"
        env_file.write_text("FORGEJO_TOKEN=env_file_token\n")

        with patch.dict(os.environ, {"FORGEJO_TOKEN": "existing_token"}, clear=False):
            with patch("pathlib.Path.cwd", return_value=tmp_path):
                load_environment_variables()

                assert os.getenv("FORGEJO_TOKEN") == "existing_token"

    @pytest.mark.parametrize("placeholder", ["YOUR_TOKEN_HERE", "REPLACE_ME", "TODO", "CHANGEME", "   \t "])
    def test_load_environment_overrides_placeholder_tokens(self, tmp_path, placeholder):
        """Test that placeholder and whitespace tokens are overridden."""
        env_file = tmp_path / ".env"
        env_file.write_text("GITEA_TOKEN=real_token_123\n")

        with patch.dict(os.environ, {"GITEA_TOKEN": placeholder}, clear=False):
            with patch("pathlib.Path.cwd", return_value=tmp_path):
                load_environment_variables()

                assert os.getenv("GITEA_TOKEN") == "real_token_123"

    def test_repository_env_file_is_loaded(self, tmp_path):
        """Test that a repository-specific .env is read after the working directory one."""
        cwd = tmp_path / "cwd"
        repo = tmp_path / "repo"
        cwd.mkdir()
        repo.mkdir()
        (repo / ".env").write_text("FORGEJO_URL=https://forge.example.com\n")

        with patch.dict(os.environ, {}, clear=True):
            with patch("pathlib.Path.cwd", return_value=cwd):
                loaded = load_environment_variables(repo)

                assert loaded == [str(repo / ".env")]
                assert os.getenv("FORGEJO_URL") == "https://forge.example.com"

    def test_no_env_files(self, tmp_path):
        with patch("pathlib.Path.cwd", return_value=tmp_path):
            assert load_environment_variables() == []


class TestConfigFromEnvironment:
    """Test building ServerConfig from an environment mapping."""

    def test_defaults(self):
        config = load_config_from_env(env={})

        assert config.forgejo_url == "https://codeberg.org"
        assert config.token is None
        assert config.context_cache_ttl == 300
        assert config.auth_cache_ttl == 300
        assert config.max_concurrency == 8
        assert config.remote_name == "origin"

    def test_values_are_read_and_coerced(self):
        config = load_config_from_env(
            env={
                "FORGEJO_URL": "https://forge.example.com/",
                "FORGEJO_TOKEN": TOKEN,
                "MCP_CONTEXT_CACHE_TTL": "120",
                "MCP_AUTH_CACHE_TTL": "30",
                "MCP_MAX_CONCURRENCY": "2",
                "MCP_TOOL_TIMEOUT": "12.5",
                "FORGEJO_EXTRA_HOSTS": "Git.Internal, forge.lan",
                "LOG_LEVEL": "debug",
            },
            repository=Path("/work/widgets"),
        )

        assert config.forgejo_url == "https://forge.example.com"
        assert config.token_value() == TOKEN
        assert (config.context_cache_ttl, config.auth_cache_ttl) == (120, 30)
        assert config.max_concurrency == 2
        assert config.tool_timeout == 12.5
        assert config.extra_hosts == ("git.internal", "forge.lan")
        assert config.log_level == "DEBUG"
        assert config.repository == Path("/work/widgets")

    def test_shared_cache_ttl_applies_to_both_caches(self):
        config = load_config_from_env(env={"MCP_CACHE_TTL": "45"})
        assert (config.context_cache_ttl, config.auth_cache_ttl) == (45, 45)

    def test_gitea_variables_are_fallbacks(self):
        config = load_config_from_env(
            env={"GITEA_URL": "https://gitea.example.com", "GITEA_TOKEN": TOKEN, "FORGEJO_TOKEN": "CHANGEME"}
        )
        assert config.forgejo_url == "https://gitea.example.com"
        assert config.token_value() == TOKEN

    def test_placeholder_token_means_absent(self):
        config = load_config_from_env(env={"FORGEJO_TOKEN": "YOUR_TOKEN_HERE"})
        assert not config.has_token

    def test_token_is_registered_for_redaction(self):
        load_config_from_env(env={"FORGEJO_TOKEN": TOKEN})
        assert TOKEN in registered_secrets()
        assert TOKEN not in redact(f"Authorization: token {TOKEN}")

    def test_token_is_hidden_in_repr(self):
        config = load_config_from_env(env={"FORGEJO_TOKEN": TOKEN})
        assert TOKEN not in repr(config)
        assert TOKEN not in str(config.model_dump())

    @pytest.mark.parametrize(
        "env, field",
        [
            ({"MCP_MAX_CONCURRENCY": "0"}, "max_concurrency"),
            ({"MCP_CONTEXT_CACHE_TTL": "-1"}, "context_cache_ttl"),
            ({"MCP_TOOL_TIMEOUT": "soon"}, "tool_timeout"),
            ({"FORGEJO_URL": "codeberg.org"}, "forgejo_url"),
            ({"LOG_LEVEL": "LOUD"}, "log_level"),
        ],
    )
    def test_invalid_values_raise_configuration_error(self, env, field):
        with pytest.raises(ConfigurationError, match=field):
            load_config_from_env(env=env)

    def test_config_is_immutable(self):
        config = ServerConfig()
        with pytest.raises(Exception):
            config.max_concurrency = 3
