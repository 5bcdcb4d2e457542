"""Camera tool: capture a still frame for the model to look at.

The frame itself comes from whoever owns the cameras (UI or device side),
reached through a frame requester supplied by the orchestrator. Each camera
has its own cooldown and sliding-window cap.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from bobi.core.rate_limit import Clock, Cooldown, SlidingWindowCounter
from bobi.tools.dispatcher import FrameRequester, ToolDefinition, ToolError, ToolParam

if TYPE_CHECKING:
    from bobi.core.config import Settings
    from bobi.core.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

CAMERAS = ("front", "rear")


def create_camera_tools(
    settings: Settings,
    state_machine: SessionStateMachine,
    frame_requester: FrameRequester,
    clock: Clock,
) -> list[ToolDefinition]:
    """Create the capture_frame tool with per-camera rate limiters.

    Args:
        settings: Capture cooldown and window configuration.
        state_machine: Only an awake device may upload frames.
        frame_requester: Coroutine (camera, max_width, quality) → frame dict or None.
        clock: Millisecond clock for the limiters.

    Returns:
        List containing the capture_frame ToolDefinition.
    """
    limiters = {
        camera: (
            Cooldown(settings.capture_cooldown_ms, clock),
            SlidingWindowCounter(
                settings.capture_max_per_window, settings.capture_window_ms, clock
            ),
        )
        for camera in CAMERAS
    }
    window_s = settings.capture_window_ms // 1000

    async def capture_frame(
        camera: str = "front", maxWidth: int = 640, quality: float = 0.7
    ) -> dict[str, Any]:
        if camera not in limiters:
            raise ToolError(f"Invalid camera '{camera}'. Must be one of: {', '.join(CAMERAS)}")

        if not state_machine.can_upload_data():
            raise ToolError("Cannot capture: Bobi is idle (DVR recording only)")

        cooldown, counter = limiters[camera]
        if not cooldown.can_act():
            raise ToolError(
                f"Rate limited: cooldown {math.ceil(cooldown.remaining())}ms remaining"
            )
        if not counter.can_act():
            raise ToolError(
                f"Rate limited: max {counter.max_count} captures per {window_s}s"
            )

        cooldown.act()
        counter.act()

        logger.info("Requesting frame from %s camera", camera)
        frame = await frame_requester(camera, int(maxWidth), float(quality))
        if not frame:
            raise ToolError("Failed to capture frame")

        logger.info("Frame captured from %s camera", camera)
        return frame

    return [
        ToolDefinition(
            name="capture_frame",
            description=(
                "Take a photo. front = the cabin and the driver, "
                "rear = the road and outside the car."
            ),
            parameters={
                "camera": ToolParam(
                    "string", "Which camera to use", required=True, enum=CAMERAS
                ),
                "maxWidth": ToolParam(
                    "number", "Maximum image width in pixels, default 640", required=False
                ),
                "quality": ToolParam(
                    "number", "JPEG quality 0-1, default 0.7", required=False
                ),
            },
            handler=capture_frame,
        ),
    ]
