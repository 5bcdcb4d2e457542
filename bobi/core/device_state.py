"""Device state store.

Holds the single mutable record of what the device looks and sounds like
(volume, brightness, mood, expression, head pose), the latest sensor
readings and the realtime session status. The orchestrator owns one store
and hands it to the state machine and the tool dispatcher; nothing else
writes to it.
"""

from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from bobi.core.events import DEVICE_CHANGED, EventBus, now_ms

logger = logging.getLogger(__name__)

MOODS = ("happy", "sad", "curious", "surprised", "sleepy", "neutral", "concerned")

REALTIME_STATUSES = ("disconnected", "connecting", "connected", "error")

EXPRESSION_VARIANTS = 3

YAW_LIMIT = 45.0
PITCH_LIMIT = 30.0
ROLL_LIMIT = 30.0

# (yaw, pitch, roll) per mood; index matches the expression variant picked alongside it.
MOOD_HEAD_POSES: dict[str, tuple[tuple[float, float, float], ...]] = {
    "happy": ((0, -5, 0), (8, -3, 5), (-8, -3, -5)),
    "sad": ((0, 10, 0), (-5, 8, -3), (5, 12, 3)),
    "curious": ((15, -5, 8), (-15, -5, -8), (0, -10, 12)),
    "surprised": ((0, -8, 0), (-5, -10, -3), (5, -10, 3)),
    "sleepy": ((0, 8, 0), (-3, 5, -10), (3, 5, 10)),
    "neutral": ((0, 0, 0), (3, -2, 0), (-3, -2, 0)),
    "concerned": ((0, 5, 0), (-6, 6, -4), (6, 6, 4)),
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class HeadPose:
    """Head orientation in degrees."""

    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    def clamped(self) -> HeadPose:
        return HeadPose(
            yaw=_clamp(self.yaw, -YAW_LIMIT, YAW_LIMIT),
            pitch=_clamp(self.pitch, -PITCH_LIMIT, PITCH_LIMIT),
            roll=_clamp(self.roll, -ROLL_LIMIT, ROLL_LIMIT),
        )

    def merged(self, updates: dict[str, Any]) -> HeadPose:
        """Return a copy with the given axes replaced (missing axes kept)."""
        return HeadPose(
            yaw=float(updates.get("yaw", self.yaw)),
            pitch=float(updates.get("pitch", self.pitch)),
            roll=float(updates.get("roll", self.roll)),
        )


@dataclass(frozen=True)
class DeviceState:
    """Snapshot of the device's user-visible state.

    Attributes:
        volume: Speaker volume, 0-100.
        brightness: Screen brightness, 0-100.
        mood: One of MOODS.
        expression: Animation variant id, "<mood>_<index>".
        head_pose: Current head orientation.
    """

    volume: int = 50
    brightness: int = 70
    mood: str = "sleepy"
    expression: str = "sleepy_0"
    head_pose: HeadPose = field(default_factory=HeadPose)

    def to_dict(self) -> dict[str, Any]:
        return {
            "volume": self.volume,
            "brightness": self.brightness,
            "mood": self.mood,
            "expression": self.expression,
            "headPose": asdict(self.head_pose),
        }


@dataclass(frozen=True)
class GPSLocation:
    lat: float = 39.9042
    lng: float = 116.4074
    speed_kmh: float = 0.0
    heading: float = 0.0
    accuracy: float = 10.0
    ts: float = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IMUSummary:
    """Latest motion summary: acceleration in m/s^2, rotation in deg/s."""

    ax: float = 0.0
    ay: float = 0.0
    az: float = 9.8
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0
    event_level: str | None = None
    ts: float = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["eventLevel"] = data.pop("event_level")
        return data


def pick_variant(mood: str, rng: random.Random) -> tuple[int, int]:
    """Choose the expression and head-pose variants for a mood.

    Args:
        mood: Mood name. Unknown moods use the neutral pose table.
        rng: Random source, seeded in tests for determinism.

    Returns:
        (expression_index, pose_index)
    """
    poses = MOOD_HEAD_POSES.get(mood, MOOD_HEAD_POSES["neutral"])
    return rng.randrange(EXPRESSION_VARIANTS), rng.randrange(len(poses))


class DeviceStateStore:
    """Owner of the device record, sensor readings and session status.

    Args:
        bus: Event bus that receives DEVICE_CHANGED notifications.
        rng: Random source for mood variant selection.
    """

    def __init__(self, bus: EventBus, rng: random.Random | None = None) -> None:
        self._bus = bus
        self._rng = rng or random.Random()
        self._device = DeviceState()
        self._gps = GPSLocation()
        self._imu = IMUSummary()
        self._realtime_status = "disconnected"
        self._realtime_model = ""

    # ------------------------------------------------------------------
    # Device record
    # ------------------------------------------------------------------

    def snapshot(self) -> DeviceState:
        """Return the current device state (immutable)."""
        return self._device

    def update(
        self,
        volume: float | None = None,
        brightness: float | None = None,
        head_pose: HeadPose | dict[str, Any] | None = None,
        expression: str | None = None,
    ) -> DeviceState:
        """Merge a partial update into the device record.

        Volume and brightness are clamped to 0-100 and the head pose to its
        mechanical range. Fields left as None keep their current value.

        Returns:
            The resulting device state.
        """
        changes: dict[str, Any] = {}
        if volume is not None:
            changes["volume"] = int(round(_clamp(volume, 0, 100)))
        if brightness is not None:
            changes["brightness"] = int(round(_clamp(brightness, 0, 100)))
        if head_pose is not None:
            if isinstance(head_pose, dict):
                head_pose = self._device.head_pose.merged(head_pose)
            changes["head_pose"] = head_pose.clamped()
        if expression is not None:
            changes["expression"] = expression

        if changes:
            self._device = replace(self._device, **changes)
            logger.debug("Device state updated: %s", changes)
            self._bus.publish(DEVICE_CHANGED, self._device)
        return self._device

    def set_mood(self, mood: str) -> DeviceState:
        """Set the mood and pick a random expression and head-pose variant.

        Raises:
            ValueError: If the mood is not one of MOODS.
        """
        if mood not in MOODS:
            raise ValueError(f"Unknown mood '{mood}'. Must be one of: {', '.join(MOODS)}")

        expr_index, pose_index = pick_variant(mood, self._rng)
        yaw, pitch, roll = MOOD_HEAD_POSES[mood][pose_index]
        self._device = replace(
            self._device,
            mood=mood,
            expression=f"{mood}_{expr_index}",
            head_pose=HeadPose(yaw, pitch, roll).clamped(),
        )
        logger.info("Mood set to %s (expr:%d, pose:%d)", mood, expr_index, pose_index)
        self._bus.publish(DEVICE_CHANGED, self._device)
        return self._device

    # ------------------------------------------------------------------
    # Sensors
    # ------------------------------------------------------------------

    @property
    def gps(self) -> GPSLocation:
        return self._gps

    def update_gps(self, **fields: Any) -> GPSLocation:
        """Replace GPS fields; the reading is re-stamped unless ``ts`` is given."""
        fields.setdefault("ts", now_ms())
        self._gps = replace(self._gps, **fields)
        return self._gps

    @property
    def imu(self) -> IMUSummary:
        return self._imu

    def update_imu(self, **fields: Any) -> IMUSummary:
        fields.setdefault("ts", now_ms())
        self._imu = replace(self._imu, **fields)
        return self._imu

    # ------------------------------------------------------------------
    # Realtime session status
    # ------------------------------------------------------------------

    @property
    def realtime_status(self) -> str:
        return self._realtime_status

    @property
    def realtime_model(self) -> str:
        return self._realtime_model

    def set_realtime_status(self, status: str, model: str | None = None) -> None:
        if status not in REALTIME_STATUSES:
            raise ValueError(f"Unknown realtime status '{status}'")
        self._realtime_status = status
        if model is not None:
            self._realtime_model = model
        logger.info("Realtime status: %s", status)
