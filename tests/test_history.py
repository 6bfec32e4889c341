from __future__ import annotations

from typing import List

import pytest

from agent_runtime.history import SUMMARY_PREFIX, ConversationHistory
from agent_runtime.messages import Message, Role, ToolCallRequest


def _summaries(history: ConversationHistory) -> List[Message]:
    return [m for m in history.messages if m.role is Role.SYSTEM and m.content.startswith(SUMMARY_PREFIX)]


def _alternating(count: int) -> List[Message]:
    messages: List[Message] = []
    for i in range(1, count + 1):
        messages.append(Message.user(f"question {i}"))
        messages.append(Message.assistant(f"answer {i}", "Helper"))
    return messages


def test_under_limit_is_untouched() -> None:
    messages = _alternating(2)
    history = ConversationHistory(messages, max_messages=4)
    assert history.messages == messages
    assert _summaries(history) == []


def test_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        ConversationHistory(max_messages=0)


def test_compaction_keeps_most_recent_and_adds_summary() -> None:
    history = ConversationHistory(_alternating(3), max_messages=4)

    messages = history.messages
    assert history.non_system_count() == 4
    assert [m.content for m in messages[1:]] == ["question 2", "answer 2", "question 3", "answer 3"]

    summary = messages[0]
    assert summary.role is Role.SYSTEM
    assert summary.content == (
        "[Conversation history compacted: 2 earlier messages summarized]\n"
        "Dropped 1 user messages, 1 assistant responses, 0 tool calls\n"
        "Topics discussed: question 1"
    )


def test_system_messages_are_never_dropped() -> None:
    system = Message.system("You are terse.")
    history = ConversationHistory([system] + _alternating(3), max_messages=4)

    messages = history.messages
    assert messages[0] == system
    assert messages[1].content.startswith(SUMMARY_PREFIX)
    assert history.non_system_count() == 4


def test_tail_never_starts_with_tool_result() -> None:
    call_a = ToolCallRequest("c1", "get_time")
    call_b = ToolCallRequest("c2", "echo", '{"text": "x"}')
    history = ConversationHistory(
        [
            Message.user("what time is it"),
            Message.assistant("", "Helper", tool_calls=(call_a, call_b)),
            Message.tool_result("c1", "12:00"),
            Message.tool_result("c2", "x"),
            Message.user("thanks"),
            Message.assistant("you're welcome", "Helper"),
        ],
        max_messages=3,
    )

    conversation = [m for m in history.messages if m.role is not Role.SYSTEM]
    assert conversation[0].role is not Role.TOOL
    assert [m.content for m in conversation] == ["thanks", "you're welcome"]
    assert "Dropped 1 user messages, 1 assistant responses, 2 tool calls" in _summaries(history)[0].content


def test_repeated_compaction_keeps_one_cumulative_summary() -> None:
    history = ConversationHistory(max_messages=2)
    for msg in [
        Message.user("u1"),
        Message.assistant("a1"),
        Message.user("u2"),
        Message.assistant("a2"),
        Message.user("u3"),
    ]:
        history.append(msg)

    summaries = _summaries(history)
    assert len(summaries) == 1
    assert "3 earlier messages summarized" in summaries[0].content
    assert "Dropped 2 user messages, 1 assistant responses, 0 tool calls" in summaries[0].content
    assert "Topics discussed: u1; u2" in summaries[0].content
    assert [m.content for m in history.messages[1:]] == ["a2", "u3"]


def test_topic_hints_use_first_line_and_truncate() -> None:
    long_line = "x" * 100
    huge_line = "y" * 250
    history = ConversationHistory(
        [
            Message.user("first line\nsecond line"),
            Message.user(long_line),
            Message.user(huge_line),
            Message.user("   "),
            Message.user("kept"),
        ],
        max_messages=1,
    )

    content = _summaries(history)[0].content
    assert "Topics discussed: first line; " + "x" * 80 + "..." in content
    assert "second line" not in content
    assert "y" * 80 not in content
    assert "Dropped 4 user messages" in content


def test_repeated_compaction_keeps_every_topic_in_one_summary() -> None:
    history = ConversationHistory(max_messages=2)
    for i in range(1, 26):
        history.append(Message.user(f"topic {i}"))
        history.append(Message.assistant(f"reply {i}", "Helper"))

    summaries = _summaries(history)
    assert len(summaries) == 1
    content = summaries[0].content
    assert "Dropped 24 user messages, 24 assistant responses, 0 tool calls" in content
    expected = "; ".join(f"topic {i}" for i in range(1, 25))
    assert f"Topics discussed: {expected}" in content
    assert [m.content for m in history.messages[1:]] == ["topic 25", "reply 25"]


def test_compaction_is_deterministic() -> None:
    first = ConversationHistory(_alternating(5), max_messages=3)
    second = ConversationHistory(_alternating(5), max_messages=3)
    assert first.messages == second.messages


def test_latest_user_content_and_last_assistant() -> None:
    history = ConversationHistory(_alternating(2))
    assert history.latest_user_content() == "question 2"
    assert history.last_assistant_content() == "answer 2"
    assert history.last_message().content == "answer 2"
