from __future__ import annotations

import pytest

from agent_runtime.agent import (
    DEFAULT_INSTRUCTIONS,
    DEFAULT_MODEL,
    Agent,
    AgentResponse,
    AgentResult,
    ToolChoice,
)
from agent_runtime.context import AgentContext
from agent_runtime.messages import Message, Role, ToolCallRequest


### 1) Agent ###################################################################


def test_agent_defaults() -> None:
    agent = Agent(name="Helper")
    assert agent.model == DEFAULT_MODEL
    assert agent.resolve_instructions({}) == DEFAULT_INSTRUCTIONS
    assert agent.tool_names == ()
    assert agent.tool_choice_policy is ToolChoice.AUTO


def test_agent_empty_fields_fall_back_to_defaults() -> None:
    agent = Agent(name="Helper", model="", instructions=None, tool_choice="")
    assert agent.model == DEFAULT_MODEL
    assert agent.resolve_instructions({}) == DEFAULT_INSTRUCTIONS
    assert agent.tool_choice == "auto"


def test_dynamic_instructions_see_context_variables() -> None:
    agent = Agent(name="Greeter", instructions=lambda ctx: f"Help {ctx.get('user_name', 'someone')}.")
    assert agent.has_dynamic_instructions
    assert agent.resolve_instructions({"user_name": "Ada"}) == "Help Ada."
    assert agent.resolve_instructions({}) == "Help someone."


def test_tool_names_are_coerced_to_tuple() -> None:
    agent = Agent(name="A", tool_names=["get_time", "echo"])
    assert agent.tool_names == ("get_time", "echo")


@pytest.mark.parametrize(
    "choice,expected",
    [
        ("auto", ToolChoice.AUTO),
        ("required", ToolChoice.REQUIRED),
        ("none", ToolChoice.NONE),
        ("get_time", ToolChoice.NAMED),
        ("named", ToolChoice.AUTO),
    ],
)
def test_tool_choice_policy(choice: str, expected: ToolChoice) -> None:
    assert Agent(name="A", tool_choice=choice).tool_choice_policy is expected


def test_with_overrides_keeps_unset_fields() -> None:
    agent = Agent(name="A", model="gpt-4o", instructions="Be brief.", tool_names=("echo",))
    changed = agent.with_overrides(model="ollama:llama3", name="")
    assert changed.model == "ollama:llama3"
    assert changed.name == "A"
    assert changed.instructions == "Be brief."
    assert changed.tool_names == ("echo",)
    assert agent.model == "gpt-4o"


### 2) AgentResult / AgentResponse ##############################################


def test_agent_result_factories() -> None:
    target = Agent(name="BillingAgent")

    plain = AgentResult.of("done")
    assert plain.value == "done"
    assert plain.handoff_agent is None
    assert plain.context_updates == {}

    handoff = AgentResult.handoff(target)
    assert handoff.value == "Handing off to BillingAgent"
    assert handoff.handoff_agent is target

    updated = AgentResult.with_context("ok", {"count": 3})
    assert updated.context_updates == {"count": "3"}


def test_agent_response_last_message_is_final_assistant_content() -> None:
    response = AgentResponse(
        messages=[
            Message.user("hi"),
            Message.assistant("first", "A"),
            Message.user("again"),
            Message.assistant("second", "A"),
        ],
        active_agent=Agent(name="A"),
        context={},
    )
    assert response.last_message() == "second"


def test_agent_response_last_message_empty_without_assistant() -> None:
    response = AgentResponse(messages=[Message.user("hi")], active_agent=Agent(name="A"), context={})
    assert response.last_message() == ""


### 3) Message ###################################################################


def test_message_role_is_coerced_from_string() -> None:
    msg = Message(role="USER", content="hello")
    assert msg.role is Role.USER


def test_message_none_content_becomes_empty_string() -> None:
    assert Message.assistant(None).content == ""  # type: ignore[arg-type]


def test_tool_message_requires_tool_call_id() -> None:
    with pytest.raises(ValueError):
        Message(role=Role.TOOL, content="result")


def test_message_dict_conversion_keeps_tool_calls() -> None:
    msg = Message.assistant("", "Helper", tool_calls=(ToolCallRequest("c1", "get_time", "{}"),))
    raw = msg.to_dict()
    assert raw["name"] == "Helper"
    assert raw["tool_calls"] == [{"id": "c1", "name": "get_time", "arguments": "{}"}]
    assert Message.from_dict(raw) == msg


def test_message_from_dict_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        Message.from_dict({"role": "robot", "content": "beep"})


### 4) AgentContext ###############################################################


def test_context_get_set_and_default() -> None:
    ctx = AgentContext({"user_id": "42"})
    assert ctx.get("user_id") == "42"
    assert ctx.get("missing") == ""
    assert ctx.get("missing", "fallback") == "fallback"
    ctx.set("user_id", "43")
    assert ctx.get("user_id") == "43"


def test_context_merge_last_write_wins() -> None:
    ctx = AgentContext({"a": "1", "b": "2"})
    ctx.merge({"b": "3", "c": "4"})
    assert ctx.to_dict() == {"a": "1", "b": "3", "c": "4"}


def test_context_to_dict_is_a_copy() -> None:
    ctx = AgentContext({"a": "1"})
    snapshot = ctx.to_dict()
    snapshot["a"] = "changed"
    assert ctx.get("a") == "1"
    assert "a" in ctx
    assert len(ctx) == 1
