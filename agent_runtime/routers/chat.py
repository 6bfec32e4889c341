"""
Chat API.

Thin HTTP adapters over the Runner: synchronous chat, SSE streaming chat and
the default agent's runtime settings. Errors use build_error_envelope and the
request_id pattern.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ..agent import Agent
from ..config import get_settings
from ..context import AgentContext
from ..dependencies import (
    AuthError,
    enforce_auth,
    get_prompt_builder,
    get_provider,
    get_registry,
    get_settings_store,
)
from ..engine import Runner
from ..envelopes import ErrorEnvelope, build_error_envelope, log_request, new_request_id
from ..messages import Message
from ..models import AgentSettingsModel, ChatRequest, ChatResponse
from ..providers import BaseProvider
from ..sanitizer import InputSanitizer, InputValidationError
from ..settings_store import AgentSettingsStore
from ..tools import ToolRegistry

logger = logging.getLogger("agent-runtime")

router = APIRouter(prefix="/api", tags=["chat"])

_sanitizer = InputSanitizer()
_END = object()


def _error_response(request_id: str, agent_name: Optional[str], exc: ErrorEnvelope) -> JSONResponse:
    status_code, body = build_error_envelope(
        request_id=request_id,
        agent=agent_name,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )
    return JSONResponse(status_code=status_code, content=body)


def _authorize(request: Request) -> None:
    try:
        enforce_auth(request)
    except AuthError as exc:
        raise ErrorEnvelope(status_code=401, code="UNAUTHORIZED", message=str(exc)) from exc


async def _read_json(request: Request) -> Any:
    try:
        body_bytes = await request.body()
    except Exception:
        raise ErrorEnvelope(
            status_code=400,
            code="MALFORMED_REQUEST",
            message="Failed to read request body",
        )
    try:
        return json.loads(body_bytes.decode("utf-8") if body_bytes else "")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ErrorEnvelope(
            status_code=400,
            code="MALFORMED_REQUEST",
            message="Request body must be valid JSON",
            details={"message": str(exc)},
        ) from exc


def _validate(model: type, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ErrorEnvelope(
            status_code=422,
            code="INPUT_VALIDATION_ERROR",
            message="Request body failed validation",
            details=[{"path": list(err["loc"]), "message": err["msg"]} for err in exc.errors()],
        ) from exc


async def _parse_chat_request(request: Request) -> ChatRequest:
    chat_request = _validate(ChatRequest, await _read_json(request))
    try:
        _sanitizer.check_message_count(chat_request.messages)
    except InputValidationError as exc:
        raise ErrorEnvelope(
            status_code=422,
            code="INPUT_VALIDATION_ERROR",
            message=str(exc),
            details=exc.details,
        ) from exc
    return chat_request


def _prepare_run(
    chat_request: ChatRequest,
    store: AgentSettingsStore,
) -> Tuple[Agent, List[Message], AgentContext, str, int]:
    agent = store.default_agent()
    if chat_request.model:
        agent = agent.with_overrides(model=chat_request.model)

    messages: List[Message] = []
    for index, item in enumerate(chat_request.messages):
        try:
            messages.append(Message(role=item.role.lower(), content=_sanitizer.sanitize(item.content)))
        except ValueError as exc:
            raise ErrorEnvelope(
                status_code=422,
                code="INPUT_VALIDATION_ERROR",
                message="Invalid message",
                details=[{"path": ["messages", index, "role"], "message": str(exc)}],
            ) from exc

    session_id = chat_request.session_id or str(uuid.uuid4())
    context = AgentContext(chat_request.context_variables or {})
    context.set("session_id", session_id)

    max_turns = chat_request.max_turns or store.max_turns
    return agent, messages, context, session_id, max_turns


def _build_runner(provider: BaseProvider, registry: ToolRegistry) -> Runner:
    settings = get_settings()
    return Runner(
        provider,
        registry,
        get_prompt_builder(),
        max_turns=settings.max_turns,
        history_limit=settings.history_max_messages,
        stream_buffer_size=settings.stream_buffer_size,
    )


def _sse(data: str, event: Optional[str] = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


@router.post("/chat")
async def chat(
    request: Request,
    provider=Depends(get_provider),
    registry: ToolRegistry = Depends(get_registry),
    store: AgentSettingsStore = Depends(get_settings_store),
) -> JSONResponse:
    """Run the default agent to completion and return its final answer."""
    request_id = new_request_id()
    start = time.monotonic()
    agent_name = store.default_agent().name
    provider_name = get_settings().provider_name

    try:
        _authorize(request)
        chat_request = await _parse_chat_request(request)
        agent, messages, context, session_id, max_turns = _prepare_run(chat_request, store)
        runner = _build_runner(provider, registry)

        try:
            response = await run_in_threadpool(runner.run, agent, messages, context, max_turns)
        except Exception as exc:
            logger.error("chat run failed request_id=%s: %s", request_id, exc, exc_info=True)
            raise ErrorEnvelope(
                status_code=500,
                code="INTERNAL_ERROR",
                message="Provider failure",
                details={"message": str(exc)},
            ) from exc

        agent_name = response.active_agent.name
        body = ChatResponse(
            response=response.last_message(),
            agent=agent_name,
            context_variables=response.context,
            session_id=session_id,
        ).model_dump()
        status_code = 200
        result = JSONResponse(status_code=status_code, content=body)
    except ErrorEnvelope as exc:
        status_code = exc.status_code
        result = _error_response(request_id, agent_name, exc)

    log_request(
        endpoint="chat",
        request_id=request_id,
        agent=agent_name,
        provider_name=provider_name,
        status_code=status_code,
        latency_ms=(time.monotonic() - start) * 1000.0,
    )
    return result


@router.post("/chat/stream")
async def chat_stream(
    request: Request,
    provider=Depends(get_provider),
    registry: ToolRegistry = Depends(get_registry),
    store: AgentSettingsStore = Depends(get_settings_store),
):
    """
    Server-sent events stream of the default agent's answer.

    Emits `session` (the session id) first, then one `data:` event per token,
    then `done`. A failure mid-run emits `error` and ends the stream. A client
    disconnect cancels the run.
    """
    request_id = new_request_id()
    agent_name = store.default_agent().name

    try:
        _authorize(request)
        chat_request = await _parse_chat_request(request)
        agent, messages, context, session_id, max_turns = _prepare_run(chat_request, store)
    except ErrorEnvelope as exc:
        logger.info("chat_stream request_id=%s agent=%s status=%s", request_id, agent_name, exc.status_code)
        return _error_response(request_id, agent_name, exc)

    stream = _build_runner(provider, registry).run_streaming(agent, messages, context, max_turns)
    logger.info("chat_stream request_id=%s agent=%s session_id=%s started", request_id, agent.name, session_id)

    async def event_stream():
        yield _sse(session_id, event="session")
        try:
            while True:
                if await request.is_disconnected():
                    logger.info("chat_stream request_id=%s client disconnected", request_id)
                    return
                token = await run_in_threadpool(next, stream, _END)
                if token is _END:
                    break
                yield _sse(token)
        except Exception as exc:
            payload: Dict[str, Any] = {"code": "INTERNAL_ERROR", "message": str(exc)}
            yield _sse(json.dumps(payload), event="error")
            return
        finally:
            stream.cancel()
        yield _sse("[DONE]", event="done")

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.get("/settings")
async def get_agent_settings(
    request: Request,
    store: AgentSettingsStore = Depends(get_settings_store),
) -> JSONResponse:
    request_id = new_request_id()
    try:
        _authorize(request)
    except ErrorEnvelope as exc:
        return _error_response(request_id, store.default_agent().name, exc)
    return JSONResponse(status_code=200, content=store.snapshot().model_dump())


@router.put("/settings")
async def update_agent_settings(
    request: Request,
    store: AgentSettingsStore = Depends(get_settings_store),
) -> JSONResponse:
    request_id = new_request_id()
    try:
        _authorize(request)
        settings: AgentSettingsModel = _validate(AgentSettingsModel, await _read_json(request))
    except ErrorEnvelope as exc:
        return _error_response(request_id, store.default_agent().name, exc)

    updated = store.update(settings)
    return JSONResponse(status_code=200, content={"status": "saved", "settings": updated.model_dump()})
