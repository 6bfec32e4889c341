"""
Conversation message types.

Defines Role, ToolCallRequest and Message. A `tool` message always carries the
id of the tool call it answers; an `assistant` message may carry the name of
the agent that produced it and the tool calls it requested.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str = "{}"  # JSON-encoded


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    sender_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Tuple[ToolCallRequest, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(str(self.role).lower()))
        if self.content is None:
            object.__setattr__(self, "content", "")
        if self.role is Role.TOOL and not self.tool_call_id:
            raise ValueError("tool messages must carry a tool_call_id")
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(
        cls,
        content: str,
        sender_name: Optional[str] = None,
        tool_calls: Tuple[ToolCallRequest, ...] = (),
    ) -> "Message":
        return cls(Role.ASSISTANT, content, sender_name=sender_name, tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> "Message":
        return cls(Role.TOOL, content, tool_call_id=tool_call_id)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.sender_name:
            out["name"] = self.sender_name
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            out["tool_calls"] = [
                {"id": call.id, "name": call.name, "arguments": call.arguments} for call in self.tool_calls
            ]
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Message":
        """Build a message from a `{role, content, ...}` mapping; raises ValueError on an unknown role."""
        calls = tuple(
            ToolCallRequest(
                id=str(call.get("id", "")),
                name=str(call.get("name", "")),
                arguments=str(call.get("arguments") or "{}"),
            )
            for call in (raw.get("tool_calls") or [])
        )
        return cls(
            role=Role(str(raw.get("role", "user")).lower()),
            content=str(raw.get("content") or ""),
            sender_name=raw.get("name"),
            tool_call_id=raw.get("tool_call_id"),
            tool_calls=calls,
        )
