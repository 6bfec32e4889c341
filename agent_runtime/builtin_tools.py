from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .agent import AgentResult
from .context import AgentContext
from .tools import ToolRegistry

logger = logging.getLogger("agent-runtime")


def get_time(args: Dict[str, Any], ctx: AgentContext) -> str:
    tz_name = str(args.get("timezone") or "").strip()
    if tz_name:
        try:
            tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
            now = datetime.now(tz)
        except (ZoneInfoNotFoundError, ValueError):
            return f"Error: Unknown timezone '{tz_name}'"
    else:
        now = datetime.now()
    suffix = f" ({tz_name})" if tz_name else ""
    return f"Current time: {now.strftime('%Y-%m-%d %H:%M:%S')}{suffix}"


def echo(args: Dict[str, Any], ctx: AgentContext) -> str:
    return str(args.get("text", ""))


def greet_user(args: Dict[str, Any], ctx: AgentContext) -> AgentResult:
    name = str(args.get("name") or ctx.get("user_name", "stranger"))
    return AgentResult.with_context(
        f"Hello, {name}! How can I help you today?",
        {"user_name": name, "greeted": "true"},
    )


def remember(args: Dict[str, Any], ctx: AgentContext) -> AgentResult:
    key = str(args.get("key") or "").strip()
    if not key:
        return AgentResult.of("Error: 'key' is required")
    value = str(args.get("value", ""))
    return AgentResult.with_context(f"Remembered {key}.", {key: value})


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register the stock tools every agent can use."""
    registry.register_agent_tool(
        "get_time",
        get_time,
        description="Get the current date and time, optionally in a given IANA timezone.",
        parameters={
            "type": "object",
            "properties": {"timezone": {"type": "string", "description": "IANA timezone, e.g. Europe/Berlin"}},
            "required": [],
        },
    )
    registry.register_agent_tool(
        "echo",
        echo,
        description="Repeat the given text back verbatim.",
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )
    registry.register_agent_tool(
        "greet_user",
        greet_user,
        description="Greet the user by name and remember the name for the rest of the conversation.",
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string"}},
            "required": [],
        },
    )
    registry.register_agent_tool(
        "remember",
        remember,
        description="Store a key/value fact in the conversation context.",
        parameters={
            "type": "object",
            "properties": {"key": {"type": "string"}, "value": {"type": "string"}},
            "required": ["key", "value"],
        },
    )
    logger.info("Registered %s built-in tools", 4)
