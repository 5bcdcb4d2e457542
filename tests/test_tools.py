"""Tests for the tool dispatcher and the built-in tools."""

from __future__ import annotations

import random
from unittest.mock import AsyncMock

import pytest

from bobi.core.config import Settings
from bobi.core.device_state import DeviceStateStore
from bobi.core.events import EventBus
from bobi.core.rate_limit import Cache
from bobi.core.state_machine import SessionStateMachine
from bobi.tools.dispatcher import (
    END_CONVERSATION,
    ToolDefinition,
    ToolDispatcher,
    ToolError,
    ToolParam,
    ToolResult,
)

FRAME = {"camera": "front", "ts": 1.0, "imageDataUrl": "data:image/jpeg;base64,/9j/"}


class FakeClock:
    def __init__(self, start: float = 50_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def _make_tools(**overrides: object):
    """Dispatcher with the built-in tools wired to a fresh state machine."""
    settings = Settings(**overrides)
    clock = FakeClock()
    bus = EventBus()
    store = DeviceStateStore(bus, rng=random.Random(0))
    machine = SessionStateMachine(settings, store, bus)
    requester = AsyncMock(return_value=dict(FRAME))
    dispatcher = ToolDispatcher()
    dispatcher.register_builtin_tools(
        settings, machine, store, requester, Cache(settings.location_cache_ms, clock), clock
    )
    return dispatcher, machine, store, requester, clock


# ---------------------------------------------------------------------------
# ToolParam, ToolDefinition and ToolResult
# ---------------------------------------------------------------------------


class TestToolDefinition:
    def test_tool_param_defaults(self) -> None:
        param = ToolParam(type="string", description="test")
        assert param.required is True
        assert param.enum is None

    def test_tool_definition_defaults(self) -> None:
        tool = ToolDefinition(name="test", description="A test tool")
        assert tool.parameters == {}
        assert tool.handler() == {}


class TestToolResult:
    def test_ok_result_dict(self) -> None:
        result = ToolResult("call_1", result={"a": 1})
        assert result.ok
        assert result.to_output() == {"a": 1}

    def test_ok_result_scalar(self) -> None:
        assert ToolResult("call_1", result=3).to_output() == {"result": 3}

    def test_error_result(self) -> None:
        result = ToolResult("call_1", error="nope")
        assert not result.ok
        assert result.to_output() == {"error": "nope"}


# ---------------------------------------------------------------------------
# ToolDispatcher: registration and declarations
# ---------------------------------------------------------------------------


class TestDispatcherRegistration:
    def test_empty_dispatcher(self) -> None:
        dispatcher = ToolDispatcher()
        assert dispatcher.registered_tools == []
        assert dispatcher.get_tool_declarations() is None

    def test_register_overwrites_duplicate(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition("t", "V1", handler=lambda: {"v": 1}))
        dispatcher.register_tool(ToolDefinition("t", "V2", handler=lambda: {"v": 2}))
        assert dispatcher.registered_tools == ["t"]

    async def test_builtin_tools(self) -> None:
        dispatcher, *_ = _make_tools()
        assert sorted(dispatcher.registered_tools) == sorted([
            "capture_frame", "get_location", "get_imu_summary",
            "set_device_state", END_CONVERSATION,
        ])

    def test_gemini_declarations(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(
            name="greet",
            description="Say hello",
            parameters={
                "name": ToolParam("string", "Name"),
                "times": ToolParam("integer", "Repeat count", required=False),
            },
        ))
        dispatcher.register_tool(ToolDefinition(name="ping", description="Ping"))

        decls = dispatcher.get_tool_declarations("gemini")
        funcs = decls[0]["function_declarations"]
        assert funcs[0]["parameters"]["type"] == "OBJECT"
        assert funcs[0]["parameters"]["properties"]["name"]["type"] == "STRING"
        assert funcs[0]["parameters"]["required"] == ["name"]
        assert "parameters" not in funcs[1]

    def test_openai_declarations(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(
            name="pick",
            description="Pick a camera",
            parameters={"camera": ToolParam("string", "Camera", enum=("front", "rear"))},
        ))
        decls = dispatcher.get_tool_declarations("openai")
        assert decls == [{
            "type": "function",
            "name": "pick",
            "description": "Pick a camera",
            "parameters": {
                "type": "object",
                "properties": {
                    "camera": {"type": "string", "description": "Camera", "enum": ["front", "rear"]},
                },
                "required": ["camera"],
            },
        }]

    async def test_nested_object_schema(self) -> None:
        dispatcher, *_ = _make_tools()
        decls = dispatcher.get_tool_declarations("openai")
        device = next(d for d in decls if d["name"] == "set_device_state")
        head = device["parameters"]["properties"]["headPose"]
        assert head["type"] == "object"
        assert set(head["properties"]) == {"yaw", "pitch"}

    def test_unknown_dialect(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="ping", description="Ping"))
        with pytest.raises(ValueError, match="dialect"):
            dispatcher.get_tool_declarations("claude")


# ---------------------------------------------------------------------------
# ToolDispatcher: execution
# ---------------------------------------------------------------------------


class TestDispatcherExecution:
    async def test_execute_sync_tool(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(
            name="add", description="Add", handler=lambda a, b: {"sum": a + b}
        ))
        result = await dispatcher.execute_tool("add", {"a": 2, "b": 3}, "call_1")
        assert result.call_id == "call_1"
        assert result.result == {"sum": 5}

    async def test_execute_async_tool(self) -> None:
        async def slow(x: int) -> dict:
            return {"x": x}

        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="slow", description="", handler=slow))
        result = await dispatcher.execute_tool("slow", {"x": 1}, "c")
        assert result.result == {"x": 1}

    async def test_json_string_arguments(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="echo", description="", handler=lambda text: {"text": text}))
        result = await dispatcher.execute_tool("echo", '{"text": "hi"}', "c")
        assert result.result == {"text": "hi"}

    async def test_empty_arguments(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="ping", description="", handler=lambda: {"pong": True}))
        assert (await dispatcher.execute_tool("ping", None, "c")).ok
        assert (await dispatcher.execute_tool("ping", "", "c")).ok

    async def test_unknown_tool(self) -> None:
        result = await ToolDispatcher().execute_tool("nope", {}, "c")
        assert result.error == "Unknown tool: nope"

    async def test_malformed_json(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="ping", description=""))
        result = await dispatcher.execute_tool("ping", "{not json", "c")
        assert result.error.startswith("Invalid arguments:")

    async def test_non_object_arguments(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="ping", description=""))
        result = await dispatcher.execute_tool("ping", "[1, 2]", "c")
        assert result.error == "Invalid arguments: expected an object"

    async def test_tool_error_message_verbatim(self) -> None:
        def refuse() -> dict:
            raise ToolError("Not now")

        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="refuse", description="", handler=refuse))
        result = await dispatcher.execute_tool("refuse", {}, "c")
        assert result.error == "Not now"

    async def test_unexpected_exception(self) -> None:
        def broken() -> dict:
            raise KeyError("x")

        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="broken", description="", handler=broken))
        result = await dispatcher.execute_tool("broken", {}, "c")
        assert result.error.startswith("Tool execution failed:")

    async def test_unexpected_argument(self) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.register_tool(ToolDefinition(name="ping", description="", handler=lambda: {}))
        result = await dispatcher.execute_tool("ping", {"extra": 1}, "c")
        assert result.error.startswith("Tool execution failed:")

    async def test_end_conversation_acknowledges(self) -> None:
        dispatcher, *_ = _make_tools()
        result = await dispatcher.execute_tool(END_CONVERSATION, {}, "c")
        assert result.result == {"success": True}


# ---------------------------------------------------------------------------
# capture_frame
# ---------------------------------------------------------------------------


class TestCaptureFrame:
    async def test_rejected_while_idle(self) -> None:
        dispatcher, _, _, requester, _ = _make_tools()
        result = await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c")
        assert result.error == "Cannot capture: Bobi is idle (DVR recording only)"
        requester.assert_not_called()

    async def test_invalid_camera(self) -> None:
        dispatcher, machine, *_ = _make_tools()
        machine.wake()
        result = await dispatcher.execute_tool("capture_frame", {"camera": "side"}, "c")
        assert result.error == "Invalid camera 'side'. Must be one of: front, rear"

    async def test_capture_passes_options(self) -> None:
        dispatcher, machine, _, requester, _ = _make_tools()
        machine.wake()
        result = await dispatcher.execute_tool(
            "capture_frame", {"camera": "rear", "maxWidth": 320, "quality": 0.5}, "c"
        )
        assert result.ok
        assert result.result["imageDataUrl"].startswith("data:image/jpeg")
        requester.assert_awaited_once_with("rear", 320, 0.5)

    async def test_second_capture_within_cooldown_rate_limited(self) -> None:
        dispatcher, machine, _, requester, clock = _make_tools()
        machine.wake()
        first = await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c1")
        clock.advance(300)
        second = await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c2")

        assert first.ok
        assert second.error == "Rate limited: cooldown 500ms remaining"
        assert requester.await_count == 1

    async def test_window_cap(self) -> None:
        dispatcher, machine, _, _, clock = _make_tools()
        machine.wake()
        for i in range(3):
            assert (await dispatcher.execute_tool("capture_frame", {"camera": "front"}, f"c{i}")).ok
            clock.advance(800)
        result = await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c4")
        assert result.error == "Rate limited: max 3 captures per 10s"

    async def test_cameras_limited_independently(self) -> None:
        dispatcher, machine, *_ = _make_tools()
        machine.wake()
        assert (await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c1")).ok
        assert (await dispatcher.execute_tool("capture_frame", {"camera": "rear"}, "c2")).ok

    async def test_no_frame(self) -> None:
        dispatcher, machine, _, requester, _ = _make_tools()
        requester.return_value = None
        machine.wake()
        result = await dispatcher.execute_tool("capture_frame", {"camera": "front"}, "c")
        assert result.error == "Failed to capture frame"


# ---------------------------------------------------------------------------
# Sensors
# ---------------------------------------------------------------------------


class TestSensorTools:
    async def test_location_rejected_while_idle(self) -> None:
        dispatcher, *_ = _make_tools()
        result = await dispatcher.execute_tool("get_location", {}, "c")
        assert result.error == "Cannot get location: Bobi is idle (DVR recording only)"

    async def test_location_served_from_cache(self) -> None:
        dispatcher, machine, store, _, _ = _make_tools()
        machine.wake()
        first = await dispatcher.execute_tool("get_location", {}, "c1")
        store.update_gps(lat=1.0, lng=2.0)
        second = await dispatcher.execute_tool("get_location", {}, "c2")
        assert first.result == second.result

    async def test_location_refreshes_when_cache_expired(self) -> None:
        dispatcher, machine, store, _, clock = _make_tools()
        machine.wake()
        await dispatcher.execute_tool("get_location", {}, "c1")
        store.update_gps(lat=1.0, lng=2.0)
        clock.advance(1000)
        result = await dispatcher.execute_tool("get_location", {}, "c2")
        assert (result.result["lat"], result.result["lng"]) == (1.0, 2.0)

    async def test_location_does_not_mutate_store(self) -> None:
        dispatcher, machine, store, _, _ = _make_tools()
        machine.wake()
        before = store.gps
        await dispatcher.execute_tool("get_location", {}, "c")
        assert store.gps is before

    async def test_imu_summary_available_while_idle(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        store.update_imu(ax=1.5)
        result = await dispatcher.execute_tool("get_imu_summary", {}, "c")
        assert result.result["ax"] == 1.5
        assert result.result["eventLevel"] is None


# ---------------------------------------------------------------------------
# set_device_state
# ---------------------------------------------------------------------------


class TestSetDeviceState:
    async def test_volume_step_is_clamped(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        result = await dispatcher.execute_tool("set_device_state", {"volume": 100}, "c")
        assert result.result["ok"]
        assert result.result["state"]["volume"] == 65
        assert store.snapshot().volume == 65

    async def test_brightness_step_down(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"brightness": 0}, "c")
        assert store.snapshot().brightness == 55

    async def test_cooldown_shared_by_volume_and_brightness(self) -> None:
        dispatcher, _, store, _, clock = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"volume": 60}, "c1")
        clock.advance(100)
        result = await dispatcher.execute_tool("set_device_state", {"brightness": 80}, "c2")
        assert result.result["ok"] is False
        assert result.result["error"] == "Brightness change rate limited"
        assert store.snapshot().brightness == 70

        clock.advance(200)
        result = await dispatcher.execute_tool("set_device_state", {"brightness": 80}, "c3")
        assert result.result["ok"]
        assert store.snapshot().brightness == 80

    async def test_same_value_during_cooldown_is_not_an_error(self) -> None:
        dispatcher, _, _, _, _ = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"volume": 60}, "c1")
        result = await dispatcher.execute_tool("set_device_state", {"volume": 60}, "c2")
        assert result.result["ok"]

    async def test_mood_applies_even_when_volume_rate_limited(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"volume": 60}, "c1")
        result = await dispatcher.execute_tool(
            "set_device_state", {"volume": 70, "mood": "sad"}, "c2"
        )
        assert result.result["error"] == "Volume change rate limited"
        assert store.snapshot().mood == "sad"

    async def test_expression_alias(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"expression": "happy_2"}, "c")
        assert store.snapshot().mood == "happy"

    async def test_unknown_mood(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        result = await dispatcher.execute_tool("set_device_state", {"mood": "angry"}, "c")
        assert result.result["error"] == "Unknown mood: angry"
        assert store.snapshot().mood == "sleepy"

    async def test_head_pose(self) -> None:
        dispatcher, _, store, _, _ = _make_tools()
        await dispatcher.execute_tool("set_device_state", {"headPose": {"yaw": 80, "pitch": -5}}, "c")
        pose = store.snapshot().head_pose
        assert (pose.yaw, pose.pitch) == (45, -5)

    async def test_head_pose_must_be_object(self) -> None:
        dispatcher, _, _, _, _ = _make_tools()
        result = await dispatcher.execute_tool("set_device_state", {"headPose": 10}, "c")
        assert result.result["error"] == "headPose must be an object"
