"""Passive dash-cam recorder.

Keeps a ring buffer of fixed-length segment records per camera. Storage is
simulated: segments and event clips are file paths under the configured DVR
directory, nothing is written to disk.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from bobi.core.events import now_ms
from bobi.hardware.interfaces import EventRecorder

logger = logging.getLogger(__name__)

CAMERAS = ("front", "rear")


@dataclass
class Segment:
    id: str
    camera: str
    start_time: float
    file_path: str
    end_time: float | None = None


class CameraRecorder:
    """Segment ring buffer for a single camera.

    Args:
        camera: Camera name ("front" or "rear").
        base_dir: Root directory for segment and clip paths.
        segment_duration_ms: Length of one segment before rotation.
        max_segments: Number of segments kept in the ring buffer.
    """

    def __init__(
        self,
        camera: str,
        base_dir: Path,
        segment_duration_ms: int = 60000,
        max_segments: int = 60,
    ) -> None:
        self._camera = camera
        self._base_dir = base_dir
        self._segment_duration_ms = segment_duration_ms
        self._max_segments = max_segments
        self._segments: list[Segment] = []
        self._current: Segment | None = None
        self._recording = False
        self._rotation: asyncio.TimerHandle | None = None

    def start(self) -> None:
        if self._recording:
            return
        self._recording = True
        logger.info("Started recording: %s camera", self._camera)
        self._start_new_segment()

    def stop(self) -> None:
        if not self._recording:
            return
        self._recording = False
        if self._rotation is not None:
            self._rotation.cancel()
            self._rotation = None
        if self._current is not None:
            self._current.end_time = now_ms()
            logger.info("Closed segment: %s", self._current.id)
        logger.info("Stopped recording: %s camera", self._camera)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def segments(self) -> list[Segment]:
        return list(self._segments)

    def save_event_clip(
        self, event_id: str, before_ms: int = 30000, after_ms: int = 10000
    ) -> str:
        """Mark an event clip spanning the given pre/post roll.

        Returns:
            Path of the clip file.
        """
        clip_path = str(self._base_dir / "events" / f"{event_id}_{self._camera}.mp4")
        logger.info(
            "Saving event clip: %s (before=%dms, after=%dms)",
            clip_path,
            before_ms,
            after_ms,
        )
        return clip_path

    def _start_new_segment(self) -> None:
        if not self._recording:
            return

        now = now_ms()
        if self._current is not None:
            self._current.end_time = now

        segment_id = f"{self._camera}_{int(now)}"
        self._current = Segment(
            id=segment_id,
            camera=self._camera,
            start_time=now,
            file_path=str(self._base_dir / self._camera / f"{segment_id}.mp4"),
        )
        self._segments.append(self._current)
        logger.debug("New segment: %s", segment_id)

        while len(self._segments) > self._max_segments:
            removed = self._segments.pop(0)
            logger.debug("Rotated out segment: %s", removed.id)

        loop = asyncio.get_running_loop()
        self._rotation = loop.call_later(
            self._segment_duration_ms / 1000, self._start_new_segment
        )


class DVRRecorder(EventRecorder):
    """Front and rear camera recorders driven together.

    Args:
        base_dir: Root directory for segment and clip paths.
        segment_duration_ms: Length of one segment before rotation.
        max_segments: Ring buffer size per camera.
    """

    def __init__(
        self,
        base_dir: str | Path,
        segment_duration_ms: int = 60000,
        max_segments: int = 60,
    ) -> None:
        base = Path(base_dir)
        self._cameras = {
            name: CameraRecorder(name, base, segment_duration_ms, max_segments)
            for name in CAMERAS
        }

    def start_recording(self) -> None:
        for recorder in self._cameras.values():
            recorder.start()
        logger.info("DVR recording started (front + rear)")

    def stop_recording(self) -> None:
        for recorder in self._cameras.values():
            recorder.stop()
        logger.info("DVR recording stopped")

    def is_recording(self) -> bool:
        return all(r.is_recording for r in self._cameras.values())

    def camera(self, name: str) -> CameraRecorder:
        return self._cameras[name]

    def save_event_clips(
        self, event_id: str, before_ms: int = 30000, after_ms: int = 10000
    ) -> dict[str, str]:
        return {
            name: recorder.save_event_clip(event_id, before_ms, after_ms)
            for name, recorder in self._cameras.items()
        }
