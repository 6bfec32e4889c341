"""CLI entry point for the agent-runtime package."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
import sys

OPENROUTER_KEYS_URL = "https://openrouter.ai/keys"
MIN_PYTHON = (3, 10)


def _print_setup_banner(
    preset: str,
    provider: str,
    port: int,
    *,
    for_startup: bool = True,
) -> None:
    """Print setup/LLM instructions. If for_startup, show 'runtime started' line; else show 'Setup' header."""
    provider_note = "no API key required" if provider == "stub" else "API key from .env"
    base = f"http://localhost:{port}"
    print()
    if for_startup:
        print("Agent runtime started - agent: {}".format(preset))
        print("Provider: {} ({})".format(provider, provider_note))
    else:
        print("Agent Runtime Setup")
        print("Agent: {}  |  Provider: {} ({})".format(preset, provider, provider_note))
    print()
    print("Docs:     {}/docs".format(base))
    print("Health:   {}/health".format(base))
    print("Chat:     {}/api/chat".format(base))
    print("Stream:   {}/api/chat/stream".format(base))
    print()
    print("────────────────────────────────────────────")
    print("Get an API key from OpenRouter (one key for many models):")
    print("   {}".format(OPENROUTER_KEYS_URL))
    print()
    print("Create a .env file in this folder (or edit it if you already have one).")
    print("Copy the block below into .env and replace YOUR_KEY_HERE with your key.")
    print()
    print("   PROVIDER=openrouter")
    print("   OPENROUTER_API_KEY=YOUR_KEY_HERE")
    print("   OPENROUTER_MODEL=openai/gpt-4o-mini")
    print()
    print("Other providers: OPENAI_API_KEY=... or OLLAMA_BASE_URL=http://localhost:11434")
    print("Optional: AUTH_TOKEN=... to require a token on /api endpoints.")
    print()
    print("Then restart: stop the server (Ctrl+C) and run agent-runtime again.")
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("Agent Runtime CLI")
    print()
    print("Usage:")
    print("  agent-runtime                 Start the HTTP server")
    print("  agent-runtime serve           Start the HTTP server")
    print("  agent-runtime setup           Print setup/env guidance")
    print("  agent-runtime doctor          Print install/environment diagnostics")
    print('  agent-runtime chat "<text>"   Run the active agent once and stream the answer')
    print()


def _print_doctor() -> None:
    from .config import get_settings

    settings = get_settings()
    print("Agent Runtime Doctor")
    print()
    print(f"Platform: {platform.platform()}")
    print(f"Python:   {_python_version_str()}")
    print(f"Exe:      {sys.executable}")
    print(f"In venv:  {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin: {shutil.which('agent-runtime') or 'not found'}")

    try:
        pip_version = subprocess.check_output(
            [sys.executable, "-m", "pip", "--version"],
            text=True,
            stderr=subprocess.STDOUT,
        ).strip()
    except Exception as exc:  # pragma: no cover - diagnostics fallback
        pip_version = f"unavailable ({exc})"
    print(f"Pip:      {pip_version}")

    print(f"Provider: {settings.provider_name}")
    print(f"Agent:    {settings.agent_preset}")
    for key in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "OLLAMA_BASE_URL"):
        print(f"{key}: {'set' if os.environ.get(key, '').strip() else 'not set'}")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")
    print()


def _run_chat(text: str) -> int:
    """Run the active agent once against `text`, printing tokens as they arrive."""
    from .agent_loader import AgentLoadError, get_active_agent
    from .config import get_settings
    from .dependencies import get_prompt_builder, get_registry
    from .engine import Runner
    from .messages import Message
    from .providers import build_provider

    settings = get_settings()
    try:
        agent = get_active_agent()
    except AgentLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    runner = Runner(
        build_provider(),
        get_registry(),
        get_prompt_builder(),
        max_turns=settings.max_turns,
        history_limit=settings.history_max_messages,
        stream_buffer_size=settings.stream_buffer_size,
    )
    try:
        with runner.run_streaming(agent, [Message.user(text)]) as stream:
            for token in stream:
                sys.stdout.write(token)
                sys.stdout.flush()
    except KeyboardInterrupt:
        print()
        return 130
    except Exception as exc:
        print()
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print()
    return 0


def main() -> None:
    """Run the HTTP server or handle setup/doctor/chat commands."""
    from .config import get_settings

    port = int(os.environ.get("PORT", "4280"))
    host = os.environ.get("HOST", "0.0.0.0")
    settings = get_settings()

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(
                preset=settings.agent_preset,
                provider=settings.provider_name,
                port=port,
                for_startup=False,
            )
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        if subcommand == "chat":
            text = " ".join(sys.argv[2:]).strip()
            if not text:
                print('Usage: agent-runtime chat "<message>"', file=sys.stderr)
                sys.exit(2)
            sys.exit(_run_chat(text))
        if subcommand != "serve":
            print(f"Unknown command: {subcommand}", file=sys.stderr)
            _print_help()
            sys.exit(2)

    import uvicorn

    _print_setup_banner(
        preset=settings.agent_preset,
        provider=settings.provider_name,
        port=port,
        for_startup=True,
    )

    uvicorn.run(
        "agent_runtime.main:app",
        host=host,
        port=port,
        factory=False,
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
