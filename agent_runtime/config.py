import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env from current directory so PROVIDER and API keys are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    provider_name: str
    agent_preset: str
    auth_token: Optional[str]
    max_turns: int = Field(default=10, ge=1)
    history_max_messages: int = Field(default=50, ge=1)
    stream_buffer_size: int = Field(default=64, ge=1)
    workspace_dir: str = "./workspace"
    cors_origins: str = "*"

    service_name: str = "agent-runtime"
    http_port: int = 4280


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    NOTE: We intentionally *do not* cache environment values that may change
    between tests; `get_settings` below re-creates Settings each time from
    the current environment. This helper only stores defaults.
    """

    return Settings(
        provider_name="stub",
        agent_preset="assistant",
        auth_token=None,
        max_turns=10,
        history_max_messages=50,
        stream_buffer_size=64,
        workspace_dir="./workspace",
        cors_origins="*",
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime via the `env_vars` helper, so we must
    read directly from the environment on each call instead of caching.
    """

    base = _base_settings()
    return Settings(
        provider_name=(os.getenv("PROVIDER") or base.provider_name).lower(),
        agent_preset=os.getenv("AGENT_PRESET") or base.agent_preset,
        auth_token=os.getenv("AUTH_TOKEN") or None,
        max_turns=_int_env("MAX_TURNS", base.max_turns),
        history_max_messages=_int_env("HISTORY_MAX_MESSAGES", base.history_max_messages),
        stream_buffer_size=_int_env("STREAM_BUFFER_SIZE", base.stream_buffer_size),
        workspace_dir=os.getenv("WORKSPACE_DIR") or base.workspace_dir,
        cors_origins=os.getenv("CORS_ORIGINS") or base.cors_origins,
        service_name=base.service_name,
        http_port=base.http_port,
    )
