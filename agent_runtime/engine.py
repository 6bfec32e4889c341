"""
Agent execution engine.

`Runner.run` drives the turn loop on the caller's thread:

1. resolve the active agent's instructions against the context and enrich them
   into a system prompt,
2. resolve the agent's tools (its named tools, or every registered tool),
3. ask the provider for the next message,
4. stop if it requested no tools; otherwise run each requested tool, merge
   context updates, record the results and apply any handoff,
5. repeat until the turn budget runs out.

`Runner.run_streaming` runs the same loop on a worker thread and hands tokens
to the caller through a bounded TokenStream.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .agent import Agent, AgentResponse
from .context import AgentContext
from .history import DEFAULT_MAX_MESSAGES, ConversationHistory
from .messages import Message, ToolCallRequest
from .prompt import InstructionEnricher, basic_enrichment
from .providers import BaseProvider, ProviderResult
from .tools import ToolDefinition, ToolRegistry

logger = logging.getLogger("agent-runtime")

DEFAULT_MAX_TURNS = 10
DEFAULT_STREAM_BUFFER = 64
_POLL_SECONDS = 0.1


@dataclass
class _Turn:
    system_prompt: str
    transcript: List[Message]
    tools: List[ToolDefinition]


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_DONE = object()


class _Channel:
    """Worker side of a TokenStream. The worker never holds the consumer's handle."""

    def __init__(self, buffer_size: int) -> None:
        self.queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, buffer_size))
        self.cancel_event = threading.Event()
        self.response: Optional[AgentResponse] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, work) -> None:
        try:
            self.response = work(self)
        except Exception as exc:
            logger.error("Streaming error: %s", exc, exc_info=True)
            self.put(_Failure(exc))
            return
        self.put(_DONE)

    def emit(self, token: str) -> bool:
        """Queue a token, blocking while the buffer is full. False once cancelled."""
        if not token:
            return not self.cancelled
        return self.put(token)

    def put(self, item: Any) -> bool:
        while not self.cancel_event.is_set():
            try:
                self.queue.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False


class TokenStream:
    """
    Tokens produced by a streaming run.

    Iterate to receive tokens. Iteration ends when the run completes and
    re-raises the run's exception if it failed. `cancel()` stops emission; the
    worker finishes any in-flight provider or tool call and then exits.
    Dropping the stream without draining it cancels it too.
    After a successful run `response` holds the AgentResponse.
    """

    def __init__(self, buffer_size: int = DEFAULT_STREAM_BUFFER) -> None:
        self._channel = _Channel(buffer_size)
        self._thread: Optional[threading.Thread] = None
        self._finished = False

    @property
    def response(self) -> Optional[AgentResponse]:
        return self._channel.response

    @property
    def cancelled(self) -> bool:
        return self._channel.cancelled

    def cancel(self) -> None:
        if not self._channel.cancelled:
            logger.debug("Token stream cancelled by consumer")
        self._channel.cancel_event.set()

    close = cancel

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        while True:
            if self._finished or self._channel.cancelled:
                self._finished = True
                raise StopIteration
            try:
                item = self._channel.queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if item is _DONE:
                self._finished = True
                raise StopIteration
            if isinstance(item, _Failure):
                self._finished = True
                raise item.error
            return item

    def __enter__(self) -> "TokenStream":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()

    def __del__(self) -> None:
        channel = getattr(self, "_channel", None)
        if channel is not None:
            channel.cancel_event.set()

    def _start(self, work) -> None:
        self._thread = threading.Thread(target=self._channel.run, args=(work,), name="agent-stream", daemon=True)
        self._thread.start()


class Runner:
    """
    Runs agents against a provider and a tool registry.

    A Runner holds no per-run state; one instance can serve concurrent runs.
    """

    def __init__(
        self,
        provider: BaseProvider,
        registry: ToolRegistry,
        enricher: Optional[InstructionEnricher] = None,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        history_limit: int = DEFAULT_MAX_MESSAGES,
        stream_buffer_size: int = DEFAULT_STREAM_BUFFER,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.enricher = enricher
        self.max_turns = max_turns
        self.history_limit = history_limit
        self.stream_buffer_size = stream_buffer_size

    # Synchronous ----------------------------------------------------------

    def run(
        self,
        agent: Agent,
        messages: Union[ConversationHistory, Iterable[Message]],
        context: Optional[Union[AgentContext, Mapping[str, str]]] = None,
        max_turns: Optional[int] = None,
    ) -> AgentResponse:
        max_turns = self.max_turns if max_turns is None else max_turns
        context = _as_context(context)
        history = self._as_history(messages)

        active = agent
        finished = False
        turns = 0
        while turns < max_turns:
            turns += 1
            logger.debug("Turn %s/%s with agent '%s'", turns, max_turns, active.name)

            turn = self._prepare_turn(active, history, context)
            result = self._send(active, turn)
            active, finished = self._apply_result(active, result, turn, history, context, turns)
            if finished:
                break

        if not finished:
            logger.warning("Agent '%s' reached max turns (%s)", active.name, max_turns)

        return AgentResponse(messages=history.messages, active_agent=active, context=context.to_dict())

    def run_scheduled(
        self,
        agent: Agent,
        text: str,
        context: Optional[Union[AgentContext, Mapping[str, str]]] = None,
        max_turns: Optional[int] = None,
    ) -> AgentResponse:
        """Entry point for background triggers: one synthetic user message, synchronous run."""
        return self.run(agent, [Message.user(text)], context, max_turns)

    # Streaming ------------------------------------------------------------

    def run_streaming(
        self,
        agent: Agent,
        messages: Union[ConversationHistory, Iterable[Message]],
        context: Optional[Union[AgentContext, Mapping[str, str]]] = None,
        max_turns: Optional[int] = None,
    ) -> TokenStream:
        max_turns = self.max_turns if max_turns is None else max_turns
        context = _as_context(context)
        history = self._as_history(messages)

        stream = TokenStream(self.stream_buffer_size)
        stream._start(lambda s: self._stream_loop(agent, history, context, max_turns, s))
        return stream

    def _stream_loop(
        self,
        agent: Agent,
        history: ConversationHistory,
        context: AgentContext,
        max_turns: int,
        stream: _Channel,
    ) -> AgentResponse:
        active = agent
        finished = False
        turns = 0
        while turns < max_turns and not stream.cancelled:
            turns += 1
            logger.debug("Stream turn %s/%s with agent '%s'", turns, max_turns, active.name)

            turn = self._prepare_turn(active, history, context)
            result = self._stream_turn(active, turn, stream)
            if stream.cancelled:
                history.append(Message.assistant(result.text, active.name))
                break
            active, finished = self._apply_result(active, result, turn, history, context, turns)
            if finished:
                break

        if not finished and not stream.cancelled:
            logger.warning("Agent '%s' reached max turns (%s)", active.name, max_turns)

        return AgentResponse(messages=history.messages, active_agent=active, context=context.to_dict())

    def _stream_turn(self, agent: Agent, turn: _Turn, stream: _Channel) -> ProviderResult:
        try:
            chunks = iter(
                self.provider.stream(
                    turn.system_prompt,
                    turn.transcript,
                    turn.tools,
                    model=agent.model,
                    tool_choice=agent.tool_choice,
                )
            )
            chunk = next(chunks, None)
        except Exception as exc:
            logger.debug("Streaming not available, falling back to non-streaming: %s", exc)
            result = self._send(agent, turn)
            stream.emit(result.text)
            return result

        text: List[str] = []
        calls: List[ToolCallRequest] = []
        try:
            while chunk is not None:
                if chunk.text:
                    text.append(chunk.text)
                    if not stream.emit(chunk.text):
                        break
                calls.extend(chunk.tool_calls)
                chunk = next(chunks, None)
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        return ProviderResult(text="".join(text), tool_calls=calls)

    # Shared turn mechanics --------------------------------------------------

    def _as_history(self, messages: Union[ConversationHistory, Iterable[Message]]) -> ConversationHistory:
        if isinstance(messages, ConversationHistory):
            return messages
        return ConversationHistory(messages, max_messages=self.history_limit)

    def _prepare_turn(self, agent: Agent, history: ConversationHistory, context: AgentContext) -> _Turn:
        base = agent.resolve_instructions(context.to_dict())
        user_message = history.latest_user_content()
        if self.enricher is not None:
            system_prompt = self.enricher.build(base, agent.name, user_message)
        else:
            system_prompt = basic_enrichment(base, agent.name, self.registry.all_tool_names())

        if agent.tool_names:
            tools = self.registry.resolve(agent.tool_names)
        else:
            tools = self.registry.resolve_all()
        if tools:
            logger.debug("Passing %s tools to provider: %s", len(tools), [t.name for t in tools])

        return _Turn(system_prompt=system_prompt, transcript=history.messages, tools=tools)

    def _send(self, agent: Agent, turn: _Turn) -> ProviderResult:
        return _call_provider(
            self.provider,
            system_prompt=turn.system_prompt,
            transcript=turn.transcript,
            tools=turn.tools,
            model=agent.model,
            tool_choice=agent.tool_choice,
        )

    def _apply_result(
        self,
        agent: Agent,
        result: ProviderResult,
        turn: _Turn,
        history: ConversationHistory,
        context: AgentContext,
        turn_number: int,
    ) -> Tuple[Agent, bool]:
        """Record the provider's answer and run its tool calls. Returns (next agent, finished)."""
        if result.tool_calls and not turn.tools:
            logger.warning(
                "Agent '%s' requested %s tool call(s) but no tools were offered; ignoring",
                agent.name,
                len(result.tool_calls),
            )
        if not result.tool_calls or not turn.tools:
            history.append(Message.assistant(result.text, agent.name))
            logger.debug("Agent '%s' completed with response", agent.name)
            return agent, True

        calls = tuple(
            call if call.id else replace(call, id=f"call_{turn_number}_{index}")
            for index, call in enumerate(result.tool_calls)
        )
        history.append(Message.assistant(result.text, agent.name, tool_calls=calls))

        next_agent = agent
        for call in calls:
            logger.debug("Agent '%s' calling tool: %s", agent.name, call.name)
            tool_result = self.registry.execute(call.name, call.arguments, context)
            context.merge(tool_result.context_updates)
            history.append(Message.tool_result(call.id, tool_result.value))
            if tool_result.handoff_agent is not None:
                logger.info("Handoff from '%s' to '%s'", next_agent.name, tool_result.handoff_agent.name)
                next_agent = tool_result.handoff_agent
        return next_agent, False


def _as_context(context: Optional[Union[AgentContext, Mapping[str, str]]]) -> AgentContext:
    if isinstance(context, AgentContext):
        return context
    return AgentContext(context or {})


def _call_provider(provider: Any, **kwargs: Any) -> ProviderResult:
    """
    Invoke the provider.

    Tests may pass a plain callable instead of a BaseProvider; it is called
    with the same keyword arguments and may return a ProviderResult, a dict
    with `text`/`tool_calls`, or a string.
    """
    send = getattr(provider, "send", None)
    if callable(send):
        system_prompt = kwargs.pop("system_prompt")
        transcript = kwargs.pop("transcript")
        tools = kwargs.pop("tools")
        raw = send(system_prompt, transcript, tools, **kwargs)
    else:
        raw = provider(**kwargs)

    if isinstance(raw, ProviderResult):
        return raw
    if isinstance(raw, str):
        return ProviderResult(text=raw)
    if isinstance(raw, dict):
        calls = [
            call
            if isinstance(call, ToolCallRequest)
            else ToolCallRequest(
                id=str(call.get("id", "")),
                name=str(call.get("name", "")),
                arguments=_arguments_text(call.get("arguments")),
            )
            for call in raw.get("tool_calls") or []
        ]
        return ProviderResult(text=str(raw.get("text") or ""), tool_calls=calls)

    raise RuntimeError("Provider returned unsupported result type")


def _arguments_text(arguments: Any) -> str:
    if arguments is None:
        return "{}"
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)
