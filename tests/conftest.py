"""
Shared fixtures for the MCP Forgejo Server test suite.

This file provides:
1. Temporary git repositories built with GitPython
2. A controllable clock for cache TTL tests
3. Fake collaborators (API client, credential check) that count their calls
4. An in-memory stream harness for driving the dispatcher
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import git
import pytest

from mcp_server_forgejo.configuration import create_test_config
from mcp_server_forgejo.core import Dispatcher, ServerServices, build_registry
from mcp_server_forgejo.framing import FrameReader, FrameWriter, encode_message
from mcp_server_forgejo.redaction import clear_secrets

TEST_TOKEN = "f3a1c2d4e5b6a7980123456789abcdef01234567"


@pytest.fixture(autouse=True)
def reset_secrets():
    """Registered secrets are process-global; isolate them per test."""
    clear_secrets()
    yield
    clear_secrets()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_repo(tmp_path: Path):
    """Factory for git repositories with an optional set of remotes."""

    def _make(name: str = "repo", remotes: Optional[Dict[str, str]] = None, commit: bool = False) -> Path:
        path = tmp_path / name
        path.mkdir(parents=True)
        repo = git.Repo.init(path)
        with repo.config_writer() as config:
            config.set_value("user", "name", "Test User")
            config.set_value("user", "email", "test@example.com")
        for remote_name, url in (remotes or {}).items():
            repo.create_remote(remote_name, url)
        if commit:
            (path / "README.md").write_text("# Test Repository\n")
            repo.index.add(["README.md"])
            repo.index.commit("Initial commit")
        repo.close()
        return path

    return _make


class FakeForgejoClient:
    """Stands in for ForgejoClient; records calls and serves canned data."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, token_valid: bool = True):
        self.responses = responses or {}
        self.token_valid = token_valid
        self.calls: List[tuple] = []
        self.verify_calls = 0
        self.closed = False

    async def get(self, endpoint: str, token: Optional[str], params=None):
        self.calls.append(("GET", endpoint, params))
        return self.responses.get(endpoint, [])

    async def post(self, endpoint: str, token: Optional[str], json=None):
        self.calls.append(("POST", endpoint, json))
        return self.responses.get(endpoint, {"id": 1, "body": (json or {}).get("body", "")})

    async def patch(self, endpoint: str, token: Optional[str], json=None):
        self.calls.append(("PATCH", endpoint, json))
        return self.responses.get(endpoint, {"id": 1, "body": (json or {}).get("body", "")})

    async def verify_token(self, token: str) -> bool:
        self.verify_calls += 1
        return self.token_valid

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_client() -> FakeForgejoClient:
    return FakeForgejoClient()


@pytest.fixture
def make_services(fake_client):
    """Build ServerServices around the fake client; keyword overrides go to the config."""

    def _make(client=None, **config_overrides) -> ServerServices:
        config_overrides.setdefault("token", TEST_TOKEN)
        config = create_test_config(**config_overrides)
        return ServerServices(config, client=client or fake_client)

    return _make


class CollectingWriter:
    """In-memory replacement for an asyncio.StreamWriter."""

    def __init__(self):
        self.buffer = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in bytes(self.buffer).splitlines() if line.strip()]

    async def wait_for(self, count: int, timeout: float = 5.0) -> List[Dict[str, Any]]:
        async def _poll():
            while len(self.messages()) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)
        return self.messages()


class DispatchHarness:
    """Drives a Dispatcher over an in-memory stream pair."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.reader = asyncio.StreamReader()
        self.writer = CollectingWriter()
        self.task: Optional[asyncio.Task] = None

    def start(self) -> "DispatchHarness":
        self.task = asyncio.create_task(
            self.dispatcher.run(FrameReader(self.reader), FrameWriter(self.writer))
        )
        return self

    def send(self, message) -> None:
        data = message if isinstance(message, bytes) else encode_message(message)
        self.reader.feed_data(data)

    async def responses(self, count: int, timeout: float = 5.0) -> List[Dict[str, Any]]:
        return await self.writer.wait_for(count, timeout)

    async def close(self) -> List[Dict[str, Any]]:
        self.reader.feed_eof()
        await asyncio.wait_for(self.task, 10)
        return self.writer.messages()

    async def exchange(self, *messages, expect: Optional[int] = None) -> List[Dict[str, Any]]:
        """Send ``messages``, wait for ``expect`` responses, then close."""
        self.start()
        for message in messages:
            self.send(message)
        await self.responses(len(messages) if expect is None else expect)
        return await self.close()


@pytest.fixture
def make_harness(make_services):
    def _make(registry=None, services=None, **dispatcher_options) -> DispatchHarness:
        services = services or make_services()
        dispatcher = Dispatcher(registry or build_registry(), services, **dispatcher_options)
        return DispatchHarness(dispatcher)

    return _make


def by_id(messages: List[Dict[str, Any]]) -> Dict[Any, Dict[str, Any]]:
    return {message["id"]: message for message in messages}


@pytest.fixture
def responses_by_id():
    return by_id
