from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Request

from .agent_loader import AgentLoadError, list_agent_ids, register_agent_handoffs
from .builtin_tools import register_builtin_tools
from .config import get_settings
from .prompt import SystemPromptBuilder
from .providers import BaseProvider, build_provider
from .settings_store import AgentSettingsStore
from .tools import ToolRegistry

logger = logging.getLogger("agent-runtime")


def get_provider() -> BaseProvider:
    """
    Dependency returning the active provider.

    Tests rely on this function name to override the provider with a
    RecordingProvider/RaisingProvider via FastAPI's dependency_overrides.
    """

    return build_provider()


@lru_cache(maxsize=1)
def get_registry() -> ToolRegistry:
    """Process-wide tool registry with the built-in tools and every agent's handoff tools."""
    registry = ToolRegistry()
    register_builtin_tools(registry)
    for agent_id in list_agent_ids():
        try:
            register_agent_handoffs(registry, agent_id)
        except AgentLoadError as exc:
            logger.warning("Skipping handoffs for agent '%s': %s", agent_id, exc)
    return registry


@lru_cache(maxsize=1)
def get_settings_store() -> AgentSettingsStore:
    return AgentSettingsStore()


@lru_cache(maxsize=1)
def get_prompt_builder() -> SystemPromptBuilder:
    return SystemPromptBuilder(get_registry().all_tool_names)


def _get_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


def enforce_auth(request: Request) -> None:
    """
    Auth guard used by the /api endpoints.

    - If AUTH_TOKEN is set, accept that token as a bearer token or X-API-Key.
    - If it is unset, authentication is disabled (dev/tests).
    """
    settings = get_settings()
    if not settings.auth_token:
        return

    supplied = _get_bearer_token(request) or (request.headers.get("X-API-Key") or "").strip()
    if not supplied:
        raise AuthError("Missing or invalid Authorization header")
    if supplied != settings.auth_token:
        raise AuthError("Invalid API token")


class AuthError(RuntimeError):
    """Raised when authentication fails."""
