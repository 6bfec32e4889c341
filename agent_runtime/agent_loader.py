from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .agent import Agent
from .config import get_settings
from .tools import ToolRegistry

logger = logging.getLogger("agent-runtime")

# Agent YAML files ship inside the package (agent_runtime/agents/*.yaml).
AGENTS_DIR = Path(__file__).parent / "agents"


class AgentLoadError(RuntimeError):
    """Raised when an agent definition cannot be loaded or validated."""


@dataclass
class AgentDefinition:
    id: str
    agent: Agent
    handoffs: Tuple[str, ...] = field(default_factory=tuple)


def _read_agent_yaml(agent_id: str) -> Dict[str, Any]:
    agent_path = AGENTS_DIR / f"{agent_id}.yaml"
    if not agent_path.exists():
        raise AgentLoadError(f"Agent file not found: {agent_path}")

    with agent_path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise AgentLoadError(f"Invalid YAML in agent '{agent_id}': {exc}") from exc

    if not isinstance(data, dict):
        raise AgentLoadError("Agent YAML must deserialize to a mapping")

    return data


def _string_list(raw: Any, field_name: str, agent_id: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise AgentLoadError(f"Agent '{agent_id}' field '{field_name}' must be a list of strings")
    return tuple(raw)


def load_agent_definition(agent_id: str) -> AgentDefinition:
    """Load and validate an agent definition by id."""
    raw = _read_agent_yaml(agent_id)

    try:
        instructions = str(raw["instructions"]).strip()
    except KeyError as exc:
        raise AgentLoadError(f"Agent missing required field: {exc.args[0]}") from exc

    agent = Agent(
        name=str(raw.get("name") or raw.get("id") or agent_id),
        model=str(raw.get("model") or ""),
        instructions=instructions,
        tool_names=_string_list(raw.get("tools"), "tools", agent_id),
        tool_choice=str(raw.get("tool_choice") or ""),
    )
    return AgentDefinition(
        id=str(raw.get("id", agent_id)),
        agent=agent,
        handoffs=_string_list(raw.get("handoffs"), "handoffs", agent_id),
    )


def load_agent(agent_id: str) -> Agent:
    return load_agent_definition(agent_id).agent


def get_active_agent() -> Agent:
    """Resolve the agent selected by AGENT_PRESET."""
    return load_agent(get_settings().agent_preset)


def list_agent_ids() -> List[str]:
    """Discover agent ids from agents/*.yaml (filename stem = id). Returns sorted list."""
    if not AGENTS_DIR.exists():
        return []
    return sorted(p.stem for p in AGENTS_DIR.glob("*.yaml") if p.is_file())


def register_agent_handoffs(registry: ToolRegistry, agent_id: str) -> List[str]:
    """Register a `transfer_to_<id>` tool for each handoff the agent declares. Returns the tool names."""
    definition = load_agent_definition(agent_id)
    names: List[str] = []
    for target_id in definition.handoffs:
        target = load_agent(target_id)
        name = f"transfer_to_{target_id}"
        registry.register_handoff(name, target, description=f"Transfer the conversation to {target.name}.")
        names.append(name)
    if names:
        logger.debug("Registered handoff tools for agent '%s': %s", agent_id, names)
    return names
