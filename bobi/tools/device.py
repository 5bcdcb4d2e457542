"""Device tool: volume, brightness, mood and head pose.

Volume and brightness share one cooldown and move at most
``volume_brightness_max_delta`` per call towards the requested value.
Mood and head pose are not rate limited. Per-field problems are reported
as an advisory error string next to the resulting state; they never stop
the other fields from applying.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from bobi.core.device_state import MOODS
from bobi.core.rate_limit import Clock, Cooldown
from bobi.tools.dispatcher import ToolDefinition, ToolParam

if TYPE_CHECKING:
    from bobi.core.config import Settings
    from bobi.core.device_state import DeviceStateStore

logger = logging.getLogger(__name__)


def _step_towards(current: int, target: float, max_delta: int) -> float:
    delta = max(-max_delta, min(max_delta, target - current))
    return max(0, min(100, current + delta))


def create_device_tools(
    settings: Settings,
    store: DeviceStateStore,
    clock: Clock,
) -> list[ToolDefinition]:
    """Create the set_device_state tool.

    Args:
        settings: Cooldown and max-delta configuration.
        store: The device state store (single mutation entrypoint).
        clock: Millisecond clock for the cooldown.
    """
    cooldown = Cooldown(settings.volume_brightness_cooldown_ms, clock)
    max_delta = settings.volume_brightness_max_delta

    def set_device_state(
        volume: float | None = None,
        brightness: float | None = None,
        mood: str | None = None,
        expression: str | None = None,
        headPose: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        current = store.snapshot()
        errors: list[str] = []
        ready = cooldown.can_act()

        new_volume = None
        if volume is not None:
            if not ready and current.volume != volume:
                errors.append("Volume change rate limited")
            else:
                new_volume = _step_towards(current.volume, float(volume), max_delta)

        new_brightness = None
        if brightness is not None:
            if not ready and current.brightness != brightness:
                errors.append("Brightness change rate limited")
            else:
                new_brightness = _step_towards(current.brightness, float(brightness), max_delta)

        if new_volume is not None or new_brightness is not None:
            store.update(volume=new_volume, brightness=new_brightness)
            cooldown.act()

        # "expression" is the older name for the same field; "happy_2" style ids map to their mood.
        requested_mood = mood if mood is not None else expression
        if requested_mood is not None:
            base = requested_mood.rsplit("_", 1)[0] if requested_mood not in MOODS else requested_mood
            if base in MOODS:
                store.set_mood(base)
            else:
                errors.append(f"Unknown mood: {requested_mood}")

        if headPose is not None:
            if isinstance(headPose, dict):
                store.update(head_pose=headPose)
            else:
                errors.append("headPose must be an object")

        return {
            "ok": not errors,
            "error": "; ".join(errors) if errors else None,
            "state": store.snapshot().to_dict(),
        }

    return [
        ToolDefinition(
            name="set_device_state",
            description=(
                "Adjust the device: volume, brightness, mood and head pose. "
                "Set a mood with every reply to show how you feel."
            ),
            parameters={
                "mood": ToolParam(
                    "string", "Current mood", required=False, enum=MOODS
                ),
                "volume": ToolParam("number", "Speaker volume 0-100", required=False),
                "brightness": ToolParam("number", "Screen brightness 0-100", required=False),
                "headPose": ToolParam(
                    "object",
                    "Head orientation in degrees",
                    required=False,
                    properties={
                        "yaw": ToolParam("number", "Left/right, -45 to 45", required=False),
                        "pitch": ToolParam("number", "Up/down, -30 to 30", required=False),
                    },
                ),
            },
            handler=set_device_state,
        ),
    ]
