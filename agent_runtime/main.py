from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .agent_loader import AgentLoadError, get_active_agent
from .config import get_settings
from .dependencies import get_registry
from .envelopes import build_error_envelope, new_request_id
from .routers import chat as chat_router


logger = logging.getLogger("agent-runtime")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared tool registry up front so the first request does not pay for it."""
    registry = get_registry()
    logger.info("Agent runtime ready with %s tools", len(registry.all_tool_names()))
    yield


app = FastAPI(title="Agent Runtime", version="0.1.0", lifespan=lifespan)


# CORS: controlled by env CORS_ORIGINS (e.g. * or http://localhost:3000)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(chat_router.router)


def _agent_error(exc: AgentLoadError) -> JSONResponse:
    status_code, body = build_error_envelope(
        request_id=new_request_id(),
        agent=None,
        status_code=500,
        code="INTERNAL_ERROR",
        message=str(exc),
        details=None,
    )
    return JSONResponse(status_code=status_code, content=body)


@app.get("/")
async def root() -> Any:
    """
    Service metadata endpoint.
    """
    try:
        agent = get_active_agent()
    except AgentLoadError as exc:
        return _agent_error(exc)

    return {
        "service": get_settings().service_name,
        "agent": agent.name,
        "docs": "/docs",
        "health": "/health",
        "chat": "/api/chat",
    }


@app.get("/health")
async def health() -> JSONResponse:
    """
    Simple health check. Returns 200 when the active agent loads successfully.
    """
    try:
        agent = get_active_agent()
    except AgentLoadError as exc:
        return _agent_error(exc)

    payload: Dict[str, Any] = {
        "status": "ok",
        "service": get_settings().service_name,
        "agent": agent.name,
    }
    return JSONResponse(status_code=200, content=payload)


def get_app() -> FastAPI:
    """Convenience accessor for external runners."""
    return app
