from __future__ import annotations

from pathlib import Path
from typing import List

from agent_runtime.prompt import MAX_IDENTITY_FILE_CHARS, SystemPromptBuilder, basic_enrichment


def test_basic_enrichment_without_tools() -> None:
    assert basic_enrichment("Be brief.", "Helper", []) == "Be brief.\n\nYour name is Helper."


def test_basic_enrichment_lists_tools() -> None:
    prompt = basic_enrichment("Be brief.", "Helper", ["get_time", "echo"])
    assert prompt.endswith(
        "You have the following tools available: get_time, echo. "
        "Use them proactively when they can help answer the user's question."
    )


def test_builder_sections_in_order(tmp_path: Path) -> None:
    (tmp_path / "SOUL.md").write_text("I am calm and precise.", encoding="utf-8")
    (tmp_path / "USER.md").write_text("The user prefers metric units.", encoding="utf-8")
    builder = SystemPromptBuilder(lambda: ["get_time"], workspace_dir=str(tmp_path))

    prompt = builder.build("Answer questions.", "Helper", "hi")

    order = [
        prompt.index("## SOUL\nI am calm and precise."),
        prompt.index("## USER\nThe user prefers metric units."),
        prompt.index("## Instructions\nAnswer questions."),
        prompt.index("Your name is Helper."),
        prompt.index("## Available Tools"),
        prompt.index("## Safety Guidelines"),
        prompt.index("## Runtime"),
    ]
    assert order == sorted(order)
    assert "## Relevant Memories" not in prompt


def test_builder_without_workspace_files_or_tools(tmp_path: Path) -> None:
    prompt = SystemPromptBuilder(lambda: [], workspace_dir=str(tmp_path)).build("Base.", "A", "hi")
    assert prompt.startswith("## Instructions\nBase.")
    assert "## Available Tools" not in prompt


def test_builder_includes_recalled_memories(tmp_path: Path) -> None:
    queries: List[str] = []

    def recall(query: str) -> List[str]:
        queries.append(query)
        return ["User's dog is named Rex", "User lives in Lisbon"]

    builder = SystemPromptBuilder(lambda: [], recall=recall, workspace_dir=str(tmp_path))
    prompt = builder.build("Base.", "A", "what is my dog called?")

    assert queries == ["what is my dog called?"]
    assert "## Relevant Memories" in prompt
    assert "- User's dog is named Rex" in prompt


def test_builder_skips_recall_for_blank_message(tmp_path: Path) -> None:
    def recall(query: str) -> List[str]:
        raise AssertionError("recall must not run for a blank message")

    SystemPromptBuilder(lambda: [], recall=recall, workspace_dir=str(tmp_path)).build("Base.", "A", "  ")


def test_identity_is_cached_until_refreshed(tmp_path: Path) -> None:
    soul = tmp_path / "SOUL.md"
    soul.write_text("version one", encoding="utf-8")
    builder = SystemPromptBuilder(lambda: [], workspace_dir=str(tmp_path))

    assert "version one" in builder.load_identity()
    soul.write_text("version two", encoding="utf-8")
    assert "version one" in builder.load_identity()

    builder.refresh_identity()
    assert "version two" in builder.load_identity()


def test_oversized_identity_file_is_truncated(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("a" * (MAX_IDENTITY_FILE_CHARS + 10), encoding="utf-8")

    identity = SystemPromptBuilder(lambda: [], workspace_dir=str(tmp_path)).load_identity()

    assert identity.endswith("... [truncated]")
    assert "a" * MAX_IDENTITY_FILE_CHARS + "\n... [truncated]" in identity
    assert "a" * (MAX_IDENTITY_FILE_CHARS + 1) not in identity
