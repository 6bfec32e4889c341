from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Sequence

logger = logging.getLogger("agent-runtime")

MAX_MESSAGE_CHARS = 10_000
MAX_MESSAGES_PER_REQUEST = 50
TRUNCATION_MARKER = "... [truncated]"

# Control characters other than \t, \n and \r.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class InputValidationError(ValueError):
    """Raised when a chat request fails validation; carries per-field details."""

    def __init__(self, message: str, details: List[Dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class InputSanitizer:
    """Cleans user-supplied message text before it reaches an agent."""

    def __init__(self, max_chars: int = MAX_MESSAGE_CHARS, max_messages: int = MAX_MESSAGES_PER_REQUEST) -> None:
        self.max_chars = max_chars
        self.max_messages = max_messages

    def sanitize(self, text: Any) -> str:
        if text is None:
            return ""
        cleaned = _CONTROL_CHARS.sub("", str(text))
        if len(cleaned) > self.max_chars:
            logger.warning("Input truncated from %s to %s chars", len(cleaned), self.max_chars)
            cleaned = cleaned[: self.max_chars] + TRUNCATION_MARKER
        return cleaned

    def check_message_count(self, messages: Sequence[Any]) -> None:
        count = len(messages)
        if count == 0:
            raise InputValidationError(
                "At least one message is required",
                [{"path": "messages", "message": "must contain at least 1 item"}],
            )
        if count > self.max_messages:
            raise InputValidationError(
                f"Too many messages: {count} (max {self.max_messages})",
                [{"path": "messages", "message": f"must contain at most {self.max_messages} items"}],
            )
