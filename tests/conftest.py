"""Common test fixtures and fakes for memo-core tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from memo_core.config.env_vars import EnvVar


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Keep tests away from the real home directory and env overrides."""
    monkeypatch.setenv(EnvVar.HOME_DIR.value, str(tmp_path / "memo-home"))
    monkeypatch.delenv(EnvVar.FORCE_MCP_DISK_CACHE.value, raising=False)
    monkeypatch.delenv(EnvVar.TOOL_RESULT_MAX_CHARS.value, raising=False)
    monkeypatch.delenv(EnvVar.MAX_STEPS.value, raising=False)
    monkeypatch.delenv(EnvVar.LOG_LEVEL.value, raising=False)
    yield


class FakeSession:
    """Stands in for mcp.ClientSession; records calls."""

    def __init__(
        self,
        tools: list[tuple[str, str | None]] | None = None,
        resources: list[dict[str, Any]] | None = None,
        templates: list[dict[str, Any]] | None = None,
        fail_resources: Exception | None = None,
    ):
        self._tools = tools or []
        self._resources = resources or []
        self._templates = templates or []
        self._fail_resources = fail_resources
        self.calls: list[tuple[str, Any]] = []

    async def list_tools(self):
        return SimpleNamespace(
            tools=[
                SimpleNamespace(name=name, description=description, inputSchema={"type": "object"})
                for name, description in self._tools
            ]
        )

    async def call_tool(self, name: str, arguments: dict[str, Any]):
        from memo_core.tools.models import text_result

        self.calls.append(("call_tool", (name, arguments)))
        return text_result(f"{name} called with {sorted(arguments)}")

    async def list_resources(self, cursor: str | None = None):
        self.calls.append(("list_resources", cursor))
        if self._fail_resources is not None:
            raise self._fail_resources
        return {"resources": list(self._resources), "nextCursor": None}

    async def list_resource_templates(self, cursor: str | None = None):
        self.calls.append(("list_resource_templates", cursor))
        if self._fail_resources is not None:
            raise self._fail_resources
        return {"resourceTemplates": list(self._templates)}

    async def read_resource(self, uri: str):
        self.calls.append(("read_resource", uri))
        return {"contents": [{"uri": uri, "text": f"content of {uri}"}]}


class FakeConnector:
    """Connector returning FakeSessions; counts calls per server."""

    def __init__(self, sessions: dict[str, FakeSession] | None = None, fail: set[str] | None = None):
        self.sessions = sessions or {}
        self.fail = fail or set()
        self.calls: list[str] = []
        self.closed: list[str] = []

    async def __call__(self, name, config, stack):
        self.calls.append(name)
        if name in self.fail:
            raise ConnectionError(f"cannot reach {name}")
        stack.callback(self.closed.append, name)
        session = self.sessions.setdefault(name, FakeSession())
        return session, "stdio"


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def make_session():
    """Factory for FakeSession instances."""
    return FakeSession


@pytest.fixture
def make_connector():
    """Factory for FakeConnector instances."""
    return FakeConnector
