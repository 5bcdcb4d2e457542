"""Sensor tools: GPS location and IMU motion summary."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from bobi.core.events import now_ms
from bobi.tools.dispatcher import ToolDefinition, ToolError, ToolParam

if TYPE_CHECKING:
    from bobi.core.config import Settings
    from bobi.core.device_state import DeviceStateStore, GPSLocation
    from bobi.core.rate_limit import Cache
    from bobi.core.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


def create_sensor_tools(
    settings: Settings,
    state_machine: SessionStateMachine,
    store: DeviceStateStore,
    location_cache: Cache[GPSLocation],
) -> list[ToolDefinition]:
    """Create get_location and get_imu_summary.

    get_location is gated on the device being awake and served from a short
    cache; the owner invalidates the cache on every external GPS update.
    get_imu_summary is a local safety signal and is never gated.
    """

    def get_location(freshnessMs: float | None = None) -> dict[str, Any]:
        if not state_machine.can_upload_data():
            raise ToolError("Cannot get location: Bobi is idle (DVR recording only)")

        freshness = settings.location_cache_ms if freshnessMs is None else float(freshnessMs)
        cached = location_cache.get()
        if cached is not None and now_ms() - cached.ts < freshness:
            logger.debug("Returning cached location")
            return cached.to_dict()

        location = replace(store.gps, ts=now_ms())
        location_cache.set(location)
        logger.info("Location retrieved: %.4f, %.4f", location.lat, location.lng)
        return location.to_dict()

    def get_imu_summary(windowMs: float = 1000) -> dict[str, Any]:
        return store.imu.to_dict()

    return [
        ToolDefinition(
            name="get_location",
            description=(
                "Get the current GPS position, speed and heading. "
                "Only use when the user asks about location."
            ),
            parameters={
                "freshnessMs": ToolParam(
                    "number", "Acceptable age of the reading in ms, default 1000",
                    required=False,
                ),
            },
            handler=get_location,
        ),
        ToolDefinition(
            name="get_imu_summary",
            description="Get a summary of the car's motion (acceleration and gyroscope).",
            parameters={
                "windowMs": ToolParam(
                    "number", "Sampling window in ms, default 1000", required=False
                ),
            },
            handler=get_imu_summary,
        ),
    ]
