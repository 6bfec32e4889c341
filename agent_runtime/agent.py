"""
Agent definitions and run results.

An Agent is an immutable persona: name, model, instructions and the tools it
may use. Instructions are either a literal string or a function of the run's
context variables, resolved once per turn.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .messages import Message, Role

DEFAULT_MODEL = "gpt-4o"
DEFAULT_INSTRUCTIONS = "You are a helpful agent."

InstructionsFn = Callable[[Mapping[str, str]], str]


class ToolChoice(str, Enum):
    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"
    NAMED = "named"


@dataclass(frozen=True)
class Agent:
    name: str
    model: str = DEFAULT_MODEL
    instructions: Union[str, InstructionsFn, None] = DEFAULT_INSTRUCTIONS
    tool_names: Tuple[str, ...] = field(default_factory=tuple)
    # "auto" | "required" | "none" | <tool name>
    tool_choice: str = ToolChoice.AUTO.value

    def __post_init__(self) -> None:
        if not isinstance(self.tool_names, tuple):
            object.__setattr__(self, "tool_names", tuple(self.tool_names or ()))
        if not self.model:
            object.__setattr__(self, "model", DEFAULT_MODEL)
        if not self.tool_choice:
            object.__setattr__(self, "tool_choice", ToolChoice.AUTO.value)

    @property
    def tool_choice_policy(self) -> ToolChoice:
        try:
            policy = ToolChoice(self.tool_choice)
        except ValueError:
            return ToolChoice.NAMED
        # "named" on its own names no tool; treat it as auto.
        return ToolChoice.AUTO if policy is ToolChoice.NAMED else policy

    @property
    def has_dynamic_instructions(self) -> bool:
        return callable(self.instructions)

    def resolve_instructions(self, context_variables: Mapping[str, str]) -> str:
        if callable(self.instructions):
            return self.instructions(dict(context_variables))
        return self.instructions or DEFAULT_INSTRUCTIONS

    def with_overrides(
        self,
        *,
        name: Optional[str] = None,
        model: Optional[str] = None,
        instructions: Union[str, InstructionsFn, None] = None,
        tool_names: Optional[Sequence[str]] = None,
        tool_choice: Optional[str] = None,
    ) -> "Agent":
        """Return a copy with the given non-empty fields replaced."""
        changes: Dict[str, object] = {}
        if name:
            changes["name"] = name
        if model:
            changes["model"] = model
        if instructions:
            changes["instructions"] = instructions
        if tool_names is not None:
            changes["tool_names"] = tuple(tool_names)
        if tool_choice:
            changes["tool_choice"] = tool_choice
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class AgentResult:
    """
    The outcome of one tool execution.

    `value` is always present and is what the model sees. A tool failure is
    reported through `value`, not raised.
    """

    value: str
    handoff_agent: Optional[Agent] = None
    context_updates: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def of(cls, value: str) -> "AgentResult":
        return cls(value=str(value))

    @classmethod
    def handoff(cls, agent: Agent) -> "AgentResult":
        return cls(value=f"Handing off to {agent.name}", handoff_agent=agent)

    @classmethod
    def with_context(cls, value: str, context_updates: Mapping[str, str]) -> "AgentResult":
        return cls(value=str(value), context_updates={str(k): str(v) for k, v in context_updates.items()})


@dataclass
class AgentResponse:
    """Terminal output of a run."""

    messages: List[Message]
    active_agent: Agent
    context: Dict[str, str]

    def last_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.role is Role.ASSISTANT and msg.content is not None:
                return msg.content
        return ""
