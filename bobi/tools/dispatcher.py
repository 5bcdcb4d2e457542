"""Tool dispatcher: registration and execution of LLM tool calls.

Provides a ToolDispatcher that registers tools, converts them to the
function-declaration format of each LLM provider, and executes tool calls
received during a conversation. Every failure is turned into a ToolResult
carrying an error string; nothing raises out of execute_tool().
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from bobi.core.config import Settings
    from bobi.core.device_state import DeviceStateStore
    from bobi.core.rate_limit import Cache, Clock
    from bobi.core.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

END_CONVERSATION = "end_conversation"

FrameRequester = Callable[[str, int, float], Awaitable["dict[str, Any] | None"]]


class ToolError(Exception):
    """Expected tool failure; the message is returned to the model verbatim."""


@dataclass(frozen=True)
class ToolParam:
    """Parameter definition for a tool.

    Attributes:
        type: JSON Schema type ("string", "integer", "number", "boolean", "object").
        description: Human-readable description of the parameter.
        required: Whether the parameter is required.
        enum: Allowed values, if restricted.
        properties: Nested parameters for type="object".
    """

    type: str
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None
    properties: dict[str, ToolParam] | None = None


@dataclass
class ToolDefinition:
    """A registered tool with its metadata and handler.

    Attributes:
        name: Tool name (must be unique across the dispatcher).
        description: Human-readable description shown to the model.
        parameters: Parameter definitions keyed by name.
        handler: Callable that executes the tool logic (sync or async).
    """

    name: str
    description: str
    parameters: dict[str, ToolParam] = field(default_factory=dict)
    handler: Callable[..., Any] = field(default=lambda: {})


@dataclass
class ToolResult:
    """Outcome of one tool call, correlated by the model's call id."""

    call_id: str
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_output(self) -> dict[str, Any]:
        """Payload submitted back to the model."""
        if self.error is not None:
            return {"error": self.error}
        if isinstance(self.result, dict):
            return self.result
        return {"result": self.result}


def _param_schema(param: ToolParam, upper: bool) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": param.type.upper() if upper else param.type,
        "description": param.description,
    }
    if param.enum:
        schema["enum"] = list(param.enum)
    if param.properties:
        schema["properties"] = {
            name: _param_schema(sub, upper) for name, sub in param.properties.items()
        }
    return schema


def _parameters_schema(params: dict[str, ToolParam], upper: bool) -> dict[str, Any]:
    return {
        "type": "OBJECT" if upper else "object",
        "properties": {name: _param_schema(p, upper) for name, p in params.items()},
        "required": [name for name, p in params.items() if p.required],
    }


class ToolDispatcher:
    """Manages tool registrations and execution for LLM function calling."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a single tool.

        Args:
            tool: Tool definition to register.
        """
        self._tools[tool.name] = tool
        logger.info("Registered tool: %s", tool.name)

    def register_builtin_tools(
        self,
        settings: Settings,
        state_machine: SessionStateMachine,
        store: DeviceStateStore,
        frame_requester: FrameRequester,
        location_cache: Cache,
        clock: Clock,
    ) -> None:
        """Register the camera, sensor, device and session tools.

        Args:
            settings: Rate limit configuration.
            state_machine: Gate for data egress.
            store: Device state and sensor readings.
            frame_requester: Coroutine that obtains a frame from the camera owner.
            location_cache: Short-lived cache for get_location.
            clock: Millisecond clock shared by the rate limiters.
        """
        from bobi.tools.camera import create_camera_tools
        from bobi.tools.device import create_device_tools
        from bobi.tools.sensors import create_sensor_tools

        tools = (
            create_camera_tools(settings, state_machine, frame_requester, clock)
            + create_sensor_tools(settings, state_machine, store, location_cache)
            + create_device_tools(settings, store, clock)
        )
        for tool in tools:
            self.register_tool(tool)

        self.register_tool(ToolDefinition(
            name=END_CONVERSATION,
            description=(
                "Call when the user says goodbye or wants to stop talking. "
                "Say a short farewell afterwards; Bobi then goes to standby."
            ),
            handler=lambda: {"success": True},
        ))

    def get_tool_declarations(self, dialect: str = "gemini") -> list[dict] | None:
        """Return tool declarations for an LLM provider.

        Args:
            dialect: "gemini" for Live API function declarations, "openai"
                for Realtime API function tools.

        Returns:
            Provider-shaped declarations, or None if no tools are registered.

        Raises:
            ValueError: If the dialect is unknown.
        """
        if not self._tools:
            return None

        if dialect == "gemini":
            declarations = []
            for tool in self._tools.values():
                decl: dict[str, Any] = {"name": tool.name, "description": tool.description}
                if tool.parameters:
                    decl["parameters"] = _parameters_schema(tool.parameters, upper=True)
                declarations.append(decl)
            return [{"function_declarations": declarations}]

        if dialect == "openai":
            return [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": _parameters_schema(tool.parameters, upper=False),
                }
                for tool in self._tools.values()
            ]

        raise ValueError(f"Unknown tool declaration dialect: {dialect}")

    async def execute_tool(
        self, name: str, args: dict[str, Any] | str | None, call_id: str
    ) -> ToolResult:
        """Execute a registered tool by name.

        Args:
            name: Tool name.
            args: Arguments for the handler, as a dict or a JSON object string.
            call_id: Correlation id from the model.

        Returns:
            ToolResult with either the handler's result or an error string.
        """
        tool = self._tools.get(name)
        if not tool:
            return ToolResult(call_id, error=f"Unknown tool: {name}")

        if args is None or args == "":
            args = {}
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError as e:
                return ToolResult(call_id, error=f"Invalid arguments: {e}")
        if not isinstance(args, dict):
            return ToolResult(call_id, error="Invalid arguments: expected an object")

        try:
            result = tool.handler(**args)
            if inspect.isawaitable(result):
                result = await result
            return ToolResult(call_id, result=result)
        except ToolError as e:
            logger.warning("Tool '%s' rejected: %s", name, e)
            return ToolResult(call_id, error=str(e))
        except Exception as e:
            logger.error("Tool '%s' failed: %s", name, e)
            return ToolResult(call_id, error=f"Tool execution failed: {e}")

    @property
    def registered_tools(self) -> list[str]:
        """List of registered tool names."""
        return list(self._tools.keys())
