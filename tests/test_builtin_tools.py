from __future__ import annotations

import re

import pytest

from agent_runtime.builtin_tools import register_builtin_tools
from agent_runtime.context import AgentContext
from agent_runtime.tools import ToolRegistry


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    register_builtin_tools(reg)
    return reg


def test_builtin_tools_are_visible(registry: ToolRegistry) -> None:
    assert [d.name for d in registry.resolve_all()] == ["get_time", "echo", "greet_user", "remember"]


def test_get_time_local_and_timezone(registry: ToolRegistry) -> None:
    local = registry.execute("get_time", "{}", AgentContext()).value
    assert re.fullmatch(r"Current time: \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", local)

    utc = registry.execute("get_time", '{"timezone": "UTC"}', AgentContext()).value
    assert utc.endswith("(UTC)")


def test_get_time_unknown_timezone(registry: ToolRegistry) -> None:
    result = registry.execute("get_time", '{"timezone": "Mars/Olympus"}', AgentContext())
    assert result.value == "Error: Unknown timezone 'Mars/Olympus'"


def test_echo(registry: ToolRegistry) -> None:
    assert registry.execute("echo", '{"text": "hello"}', AgentContext()).value == "hello"
    assert registry.execute("echo", "not-json", AgentContext()).value == ""


def test_greet_user_uses_argument_then_context(registry: ToolRegistry) -> None:
    named = registry.execute("greet_user", '{"name": "Ada"}', AgentContext())
    assert named.value == "Hello, Ada! How can I help you today?"
    assert named.context_updates == {"user_name": "Ada", "greeted": "true"}

    from_context = registry.execute("greet_user", "{}", AgentContext({"user_name": "Grace"}))
    assert from_context.value.startswith("Hello, Grace!")

    stranger = registry.execute("greet_user", "{}", AgentContext())
    assert stranger.value.startswith("Hello, stranger!")


def test_remember_stores_key_value(registry: ToolRegistry) -> None:
    result = registry.execute("remember", '{"key": "favorite_color", "value": "teal"}', AgentContext())
    assert result.value == "Remembered favorite_color."
    assert result.context_updates == {"favorite_color": "teal"}

    missing = registry.execute("remember", '{"value": "x"}', AgentContext())
    assert missing.value == "Error: 'key' is required"
    assert missing.context_updates == {}
