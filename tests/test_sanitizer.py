from __future__ import annotations

import pytest

from agent_runtime.sanitizer import (
    MAX_MESSAGE_CHARS,
    TRUNCATION_MARKER,
    InputSanitizer,
    InputValidationError,
)


def test_strips_control_characters_but_keeps_whitespace() -> None:
    cleaned = InputSanitizer().sanitize("a\x00b\x07c\x1bd\x7f\ttab\nline\rret")
    assert cleaned == "abcd\ttab\nline\rret"


def test_none_becomes_empty_string() -> None:
    assert InputSanitizer().sanitize(None) == ""


def test_truncates_long_input() -> None:
    cleaned = InputSanitizer().sanitize("x" * (MAX_MESSAGE_CHARS + 5))
    assert cleaned == "x" * MAX_MESSAGE_CHARS + TRUNCATION_MARKER


def test_input_at_limit_is_untouched() -> None:
    text = "y" * MAX_MESSAGE_CHARS
    assert InputSanitizer().sanitize(text) == text


@pytest.mark.parametrize("count", [0, 51])
def test_message_count_out_of_range(count: int) -> None:
    with pytest.raises(InputValidationError) as exc:
        InputSanitizer().check_message_count(["m"] * count)
    assert exc.value.details[0]["path"] == "messages"


@pytest.mark.parametrize("count", [1, 50])
def test_message_count_in_range(count: int) -> None:
    InputSanitizer().check_message_count(["m"] * count)
