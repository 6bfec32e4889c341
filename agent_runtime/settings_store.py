from __future__ import annotations

import logging
import threading
from typing import Optional

from .agent import Agent
from .agent_loader import get_active_agent
from .config import get_settings
from .models import AgentSettingsModel

logger = logging.getLogger("agent-runtime")


class AgentSettingsStore:
    """
    In-memory settings for the default agent served over HTTP.

    Starts from the active agent YAML and MAX_TURNS; PUT /api/settings
    replaces individual fields. Nothing is persisted across restarts.
    """

    def __init__(self, agent: Optional[Agent] = None, max_turns: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._agent = agent or get_active_agent()
        self._max_turns = max_turns or get_settings().max_turns

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def default_agent(self) -> Agent:
        return self._agent

    def snapshot(self) -> AgentSettingsModel:
        agent = self._agent
        instructions = agent.instructions if isinstance(agent.instructions, str) else None
        return AgentSettingsModel(
            name=agent.name,
            model=agent.model,
            instructions=instructions,
            max_turns=self._max_turns,
        )

    def update(self, settings: AgentSettingsModel) -> AgentSettingsModel:
        with self._lock:
            self._agent = self._agent.with_overrides(
                name=settings.name,
                model=settings.model,
                instructions=settings.instructions,
            )
            if settings.max_turns:
                self._max_turns = settings.max_turns
        logger.info(
            "Agent settings updated: name=%s, model=%s, max_turns=%s",
            self._agent.name,
            self._agent.model,
            self._max_turns,
        )
        return self.snapshot()
