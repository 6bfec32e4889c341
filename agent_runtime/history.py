"""
Bounded conversation history with deterministic compaction.

Keeps the most recent `max_messages` non-system messages. Older messages are
folded into a single synthetic system message built without a model call:
per-role counts plus the first line of each dropped user message. System
messages are never counted and never dropped, and the surviving tail never
starts with a tool result.

Repeated compactions update the one synthetic summary message in place
instead of stacking a new one per compaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence

from .messages import Message, Role

logger = logging.getLogger("agent-runtime")

DEFAULT_MAX_MESSAGES = 50
SUMMARY_PREFIX = "[Conversation history compacted"

_TOPIC_MAX_CHARS = 80
_TOPIC_SKIP_CHARS = 200


@dataclass
class _CompactionStats:
    dropped: int = 0
    user: int = 0
    assistant: int = 0
    tool: int = 0
    topics: List[str] = field(default_factory=list)

    def add(self, dropped: Sequence[Message]) -> None:
        self.dropped += len(dropped)
        for msg in dropped:
            if msg.role is Role.USER:
                self.user += 1
                topic = _topic_hint(msg.content)
                if topic:
                    self.topics.append(topic)
            elif msg.role is Role.ASSISTANT:
                self.assistant += 1
            elif msg.role is Role.TOOL:
                self.tool += 1

    def summary(self) -> str:
        if not self.dropped:
            return ""
        lines = [f"Dropped {self.user} user messages, {self.assistant} assistant responses, {self.tool} tool calls"]
        if self.topics:
            lines.append("Topics discussed: " + "; ".join(self.topics))
        return "\n".join(lines)


class ConversationHistory:
    def __init__(
        self,
        initial: Optional[Iterable[Message]] = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self._messages: List[Message] = []
        self._stats = _CompactionStats()
        self._summary_message: Optional[Message] = None
        if initial:
            self.extend(initial)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)
        self._compact_if_needed()

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)
        self._compact_if_needed()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def non_system_count(self) -> int:
        return sum(1 for m in self._messages if m.role is not Role.SYSTEM)

    def last_message(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def last_assistant_content(self) -> str:
        for msg in reversed(self._messages):
            if msg.role is Role.ASSISTANT and msg.content is not None:
                return msg.content
        return ""

    def latest_user_content(self) -> str:
        for msg in reversed(self._messages):
            if msg.role is Role.USER:
                return msg.content
        return ""

    def _compact_if_needed(self) -> None:
        if self.non_system_count() <= self.max_messages:
            return

        system = [m for m in self._messages if m.role is Role.SYSTEM and m is not self._summary_message]
        conversation = [m for m in self._messages if m.role is not Role.SYSTEM]

        drop_count = len(conversation) - self.max_messages
        if drop_count <= 0:
            return

        split = _safe_split_index(conversation, drop_count)
        dropped = conversation[:split]
        kept = conversation[split:]

        self._stats.add(dropped)
        summary = self._stats.summary()

        rebuilt = list(system)
        self._summary_message = None
        if summary:
            self._summary_message = Message.system(
                f"{SUMMARY_PREFIX}: {self._stats.dropped} earlier messages summarized]\n{summary}"
            )
            rebuilt.append(self._summary_message)
        rebuilt.extend(kept)
        self._messages = rebuilt

        logger.debug(
            "Compacted conversation history: dropped=%s kept=%s total_dropped=%s",
            len(dropped),
            len(kept),
            self._stats.dropped,
        )


def _safe_split_index(conversation: Sequence[Message], target: int) -> int:
    # A tool result belongs with the assistant call before it; never start the tail on one.
    index = min(target, len(conversation))
    while index < len(conversation) and conversation[index].role is Role.TOOL:
        index += 1
    return index


def _topic_hint(content: str) -> str:
    lines = (content or "").splitlines()
    first_line = lines[0] if lines else ""
    if not first_line.strip() or len(first_line) >= _TOPIC_SKIP_CHARS:
        return ""
    if len(first_line) > _TOPIC_MAX_CHARS:
        return first_line[:_TOPIC_MAX_CHARS] + "..."
    return first_line
