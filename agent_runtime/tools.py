"""
Tool registry.

Tools come from three places and live in three separate maps:

- agent tools: local functions with access to the run's AgentContext; they can
  update context and hand off to another agent.
- callbacks: tools whose schema was produced by a provider's own tooling.
- external tools: tools surfaced by a remote tool server.

Execution checks the maps in that fixed order, so a local tool always shadows
a remote one with the same name. Tool failures, unknown names and malformed
arguments never raise out of `execute`; they come back as an AgentResult the
model can read.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from jsonschema import Draft7Validator, SchemaError

from .agent import Agent, AgentResult
from .context import AgentContext

logger = logging.getLogger("agent-runtime")

EMPTY_PARAMETERS: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

AgentToolFn = Callable[[Dict[str, Any], AgentContext], Union[AgentResult, str]]
CallbackFn = Callable[[str], str]


class ToolRegistrationError(ValueError):
    """Raised when a tool cannot be registered (bad name or invalid schema)."""


@dataclass(frozen=True)
class ToolDefinition:
    """What the model sees: name, description and a JSON Schema for the arguments."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: dict(EMPTY_PARAMETERS))


class ExecutableTool:
    """Common interface of the three tool kinds."""

    provenance = "unknown"

    def __init__(self, name: str, definition: Optional[ToolDefinition]) -> None:
        self.name = name
        self.definition = definition

    def invoke(self, arguments: Dict[str, Any], context: AgentContext) -> AgentResult:  # pragma: no cover - interface only
        raise NotImplementedError


class AgentTool(ExecutableTool):
    provenance = "agent"

    def __init__(self, name: str, fn: AgentToolFn, definition: Optional[ToolDefinition] = None) -> None:
        super().__init__(name, definition)
        self._fn = fn

    def invoke(self, arguments: Dict[str, Any], context: AgentContext) -> AgentResult:
        result = self._fn(arguments, context)
        if isinstance(result, AgentResult):
            return result
        return AgentResult.of("" if result is None else str(result))


class CallbackTool(ExecutableTool):
    provenance = "callback"

    def __init__(self, definition: ToolDefinition, fn: CallbackFn) -> None:
        super().__init__(definition.name, definition)
        self._fn = fn

    def invoke(self, arguments: Dict[str, Any], context: AgentContext) -> AgentResult:
        return AgentResult.of(self._fn(json.dumps(arguments)))


class RemoteTool(ExecutableTool):
    """A tool exposed by a remote tool server; transport is the caller's concern."""

    provenance = "external"

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Optional[Dict[str, Any]],
        invoke: CallbackFn,
        server: str = "",
    ) -> None:
        super().__init__(name, ToolDefinition(name, description or "", parameters or dict(EMPTY_PARAMETERS)))
        self.server = server
        self._invoke = invoke

    def invoke(self, arguments: Dict[str, Any], context: AgentContext) -> AgentResult:
        return AgentResult.of(self._invoke(json.dumps(arguments)))


class ToolRegistry:
    """
    Name -> tool lookup across agent tools, callbacks and external tools.

    Shared by every run in the process. Each map is replaced wholesale on
    write (copy-on-write under a lock), so readers never lock and never see a
    half-applied update.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()
        self._agent_tools: Dict[str, AgentTool] = {}
        self._callbacks: Dict[str, CallbackTool] = {}
        self._external: Dict[str, RemoteTool] = {}

    # Registration ---------------------------------------------------------

    def register_agent_tool(
        self,
        name: str,
        fn: AgentToolFn,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Register a local tool with context access.

        Without a description the tool is executable but not offered to the
        model.
        """
        _check_name(name)
        definition = None
        if description is not None:
            definition = ToolDefinition(name, description, _checked_parameters(name, parameters))
        with self._write_lock:
            self._agent_tools = {**self._agent_tools, name: AgentTool(name, fn, definition)}
        logger.debug("Registered agent tool: %s (visible=%s)", name, definition is not None)

    def register_handoff(self, name: str, agent: Agent, description: Optional[str] = None) -> None:
        """Register a model-visible tool that hands the conversation to `agent`."""
        self.register_agent_tool(
            name,
            lambda _args, _ctx: AgentResult.handoff(agent),
            description=description or f"Transfer the conversation to {agent.name}.",
        )

    def register_callback(
        self,
        name: str,
        fn: CallbackFn,
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        _check_name(name)
        tool = CallbackTool(ToolDefinition(name, description, _checked_parameters(name, parameters)), fn)
        with self._write_lock:
            self._callbacks = {**self._callbacks, name: tool}
        logger.debug("Registered tool callback: %s", name)

    def unregister_callback(self, name: str) -> None:
        with self._write_lock:
            self._callbacks = {k: v for k, v in self._callbacks.items() if k != name}
        logger.debug("Unregistered tool callback: %s", name)

    def register_external_tool(self, tool: RemoteTool) -> None:
        self.register_external_tools([tool])

    def register_external_tools(self, tools: Iterable[RemoteTool]) -> None:
        staged: Dict[str, RemoteTool] = {}
        for tool in tools:
            _check_name(tool.name)
            _checked_parameters(tool.name, tool.definition.parameters if tool.definition else None)
            staged[tool.name] = tool
        with self._write_lock:
            self._external = {**self._external, **staged}
        logger.debug("Registered %s external tools: %s", len(staged), sorted(staged))

    def unregister_external_tools(self, names: Iterable[str]) -> None:
        drop = set(names)
        with self._write_lock:
            self._external = {k: v for k, v in self._external.items() if k not in drop}
        logger.debug("Unregistered %s external tools", len(drop))

    def unregister_server(self, server: str) -> None:
        """Drop every external tool that came from `server`."""
        with self._write_lock:
            self._external = {k: v for k, v in self._external.items() if v.server != server}
        logger.debug("Unregistered external tools from server: %s", server)

    # Lookup ---------------------------------------------------------------

    def get(self, name: str) -> Optional[ExecutableTool]:
        """First match in priority order: agent tool, callback, external tool."""
        return self._agent_tools.get(name) or self._callbacks.get(name) or self._external.get(name)

    def resolve(self, names: Iterable[str]) -> List[ToolDefinition]:
        """Model-visible definitions for the given names, in the given order."""
        agent_tools, callbacks, external = self._agent_tools, self._callbacks, self._external
        definitions: List[ToolDefinition] = []
        for name in names:
            agent_tool = agent_tools.get(name)
            if agent_tool is not None:
                # Invisible agent tools are executable but never offered to the model.
                if agent_tool.definition is not None:
                    definitions.append(agent_tool.definition)
                continue
            tool = callbacks.get(name) or external.get(name)
            if tool is not None and tool.definition is not None:
                definitions.append(tool.definition)
            else:
                logger.warning("Tool '%s' not found in registry", name)
        return definitions

    def resolve_all(self) -> List[ToolDefinition]:
        """Every model-visible tool; a shadowed name appears once, with its highest-priority definition."""
        seen = set()
        definitions: List[ToolDefinition] = []
        for table in (self._agent_tools, self._callbacks, self._external):
            for name, tool in table.items():
                if name in seen:
                    continue
                seen.add(name)
                if tool.definition is not None:
                    definitions.append(tool.definition)
        return definitions

    def all_tool_names(self) -> List[str]:
        names: List[str] = []
        for table in (self._agent_tools, self._callbacks, self._external):
            names.extend(name for name in table if name not in names)
        return names

    # Execution ------------------------------------------------------------

    def execute(self, name: str, arguments: Optional[str], context: AgentContext) -> AgentResult:
        tool = self.get(name)
        if tool is None:
            logger.warning("Tool '%s' not found", name)
            return AgentResult.of(f"Error: Tool '{name}' not found.")

        args = parse_arguments(arguments)
        try:
            return tool.invoke(args, context)
        except Exception as exc:
            logger.error("Error executing %s tool '%s': %s", tool.provenance, name, exc, exc_info=True)
            return AgentResult.of(f"Error: {exc}")


def parse_arguments(arguments: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON argument string; anything but a JSON object degrades to {}."""
    if arguments is None or not str(arguments).strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("Failed to parse tool arguments %r: %s", arguments, exc)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Tool arguments must be a JSON object, got %s", type(parsed).__name__)
        return {}
    return parsed


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not name.strip():
        raise ToolRegistrationError("Tool name must be a non-empty string")


def _checked_parameters(name: str, parameters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if parameters is None:
        return dict(EMPTY_PARAMETERS)
    try:
        Draft7Validator.check_schema(parameters)
    except SchemaError as exc:
        raise ToolRegistrationError(f"Invalid parameter schema for tool '{name}': {exc.message}") from exc
    return dict(parameters)
