"""Abstract hardware interfaces for the Bobi companion.

Core code that touches the microphone, cameras or the dash-cam recorder
goes through these interfaces. Concrete drivers live outside the core;
desktop stand-ins are in bobi/hardware/stubs.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AudioInput(ABC):
    """Abstract microphone input."""

    @abstractmethod
    def open_stream(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 1024,
    ) -> None:
        """Open the audio input stream.

        Args:
            sample_rate: Sample rate in Hz.
            channels: Number of audio channels (1 = mono).
            chunk_size: Number of bytes per chunk.
        """
        ...

    @abstractmethod
    def read_chunk(self) -> bytes:
        """Read one chunk of PCM audio data.

        Returns:
            Raw PCM audio bytes (16-bit little-endian).

        Raises:
            RuntimeError: If the stream is not open.
        """
        ...

    @abstractmethod
    def close_stream(self) -> None:
        """Close the audio input stream."""
        ...

    @abstractmethod
    def is_open(self) -> bool:
        """Check if the stream is currently open."""
        ...


class CameraInput(ABC):
    """Abstract camera that can produce still frames on request."""

    @abstractmethod
    def capture_frame(self, camera: str, max_width: int = 640, quality: float = 0.7) -> bytes:
        """Capture a single frame as JPEG bytes.

        Args:
            camera: Which camera to use ("front" or "rear").
            max_width: Maximum frame width in pixels.
            quality: JPEG quality, 0.0-1.0.

        Raises:
            RuntimeError: If the camera is not available.
        """
        ...

    @abstractmethod
    def is_available(self, camera: str) -> bool:
        """Check if the named camera is available."""
        ...


class EventRecorder(ABC):
    """Background dash-cam recording with event clip extraction."""

    @abstractmethod
    def start_recording(self) -> None:
        ...

    @abstractmethod
    def stop_recording(self) -> None:
        ...

    @abstractmethod
    def is_recording(self) -> bool:
        ...

    @abstractmethod
    def save_event_clips(
        self, event_id: str, before_ms: int = 30000, after_ms: int = 10000
    ) -> dict[str, str]:
        """Save a clip around an event from every camera.

        Args:
            event_id: Identifier used in the clip file names.
            before_ms: Pre-roll kept before the event.
            after_ms: Post-roll kept after the event.

        Returns:
            Clip path per camera name.
        """
        ...
