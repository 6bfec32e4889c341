"""
Request and response models for the HTTP API.

Defines ChatMessageIn, ChatRequest, ChatResponse and AgentSettingsModel.
Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ChatMessageIn(BaseModel):
    """One inbound conversation message."""

    role: str = "user"  # "user" | "assistant" | "system"
    content: Optional[str] = ""


class ChatRequest(BaseModel):
    """Parsed /api/chat and /api/chat/stream request body."""

    messages: List[ChatMessageIn]
    context_variables: Optional[Dict[str, str]] = None
    max_turns: Optional[int] = Field(default=None, ge=1)
    model: Optional[str] = None
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    agent: str
    context_variables: Dict[str, str]
    session_id: str


class AgentSettingsModel(BaseModel):
    """Runtime-editable settings of the default agent. Empty fields leave the current value."""

    name: Optional[str] = None
    model: Optional[str] = None
    instructions: Optional[str] = None
    max_turns: Optional[int] = Field(default=None, ge=1)
