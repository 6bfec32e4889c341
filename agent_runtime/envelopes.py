from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger("agent-runtime")


class ErrorEnvelope(Exception):
    """
    Custom exception used internally to simplify control flow.

    Route handlers convert this into the standardized error envelope.
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    agent: Optional[str],
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": {
            "request_id": request_id,
            "agent": agent or "unknown",
        },
    }
    return status_code, body


def log_request(
    *,
    endpoint: str,
    request_id: str,
    agent: Optional[str],
    provider_name: str,
    status_code: int,
    latency_ms: float,
) -> None:
    logger.info(
        "%s request_id=%s agent=%s provider=%s status=%s latency_ms=%.2f",
        endpoint,
        request_id,
        agent or "unknown",
        provider_name,
        status_code,
        latency_ms,
    )
