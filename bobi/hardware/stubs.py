"""Desktop stub implementations for hardware interfaces.

These stubs enable development and testing without real hardware:
- StubAudioInput: reads PCM data from a WAV file, or silence
- StubCameraInput: returns a static test JPEG
- StubFrameResponder: answers request_frame messages with StubCameraInput frames
"""

from __future__ import annotations

import base64
import logging
import struct
import wave
from pathlib import Path
from typing import Any, Callable

from bobi.hardware.interfaces import AudioInput, CameraInput

logger = logging.getLogger(__name__)


class StubAudioInput(AudioInput):
    """Reads PCM audio from a WAV file, looping if necessary.

    Args:
        wav_path: Path to a WAV file to read from. If None, generates silence.
    """

    def __init__(self, wav_path: Path | None = None) -> None:
        self._wav_path = wav_path
        self._stream_open = False
        self._chunk_size = 1024
        self._pcm_data: bytes = b""
        self._read_pos = 0

    def open_stream(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 1024,
    ) -> None:
        self._chunk_size = chunk_size
        self._read_pos = 0

        if self._wav_path and self._wav_path.exists():
            with wave.open(str(self._wav_path), "rb") as wf:
                self._pcm_data = wf.readframes(wf.getnframes())
        else:
            # One second of silence
            self._pcm_data = struct.pack(f"<{sample_rate}h", *([0] * sample_rate))

        self._stream_open = True

    def read_chunk(self) -> bytes:
        """Read one chunk of PCM audio, looping at end of data."""
        if not self._stream_open:
            raise RuntimeError("Audio input stream is not open.")

        end = self._read_pos + self._chunk_size
        if end <= len(self._pcm_data):
            chunk = self._pcm_data[self._read_pos:end]
        else:
            chunk = self._pcm_data[self._read_pos:]
            remaining = self._chunk_size - len(chunk)
            chunk += self._pcm_data[:remaining]
            end = remaining

        self._read_pos = end
        return chunk

    def close_stream(self) -> None:
        self._stream_open = False
        self._read_pos = 0

    def is_open(self) -> bool:
        return self._stream_open


class StubCameraInput(CameraInput):
    """Returns a static test JPEG image for every camera.

    Args:
        image_path: Path to a JPEG file. If None, returns a minimal JPEG placeholder.
    """

    def __init__(self, image_path: Path | None = None) -> None:
        self._image_path = image_path

    def capture_frame(self, camera: str, max_width: int = 640, quality: float = 0.7) -> bytes:
        if self._image_path and self._image_path.exists():
            return self._image_path.read_bytes()
        # SOI + EOI markers only
        return b"\xff\xd8\xff\xd9"

    def is_available(self, camera: str) -> bool:
        return camera in ("front", "rear")


class StubFrameResponder:
    """Plays the camera owner for desktop runs.

    Subscribe on_outbound() to the orchestrator's outbound messages; each
    request_frame is answered through the fulfil callback with a data URL.

    Args:
        camera: Camera that produces the frames.
        fulfil: Callable(request_id, image_data_url, error) into the orchestrator.
    """

    def __init__(
        self,
        camera: CameraInput,
        fulfil: Callable[[str, str | None, str | None], Any],
    ) -> None:
        self._camera = camera
        self._fulfil = fulfil

    def on_outbound(self, message: Any) -> None:
        if message.type != "request_frame":
            return

        payload = message.payload
        request_id = payload["requestId"]
        camera = payload.get("camera", "front")
        try:
            frame = self._camera.capture_frame(
                camera,
                max_width=int(payload.get("maxWidth", 640)),
                quality=float(payload.get("quality", 0.7)),
            )
        except RuntimeError as e:
            logger.warning("Stub camera failed: %s", e)
            self._fulfil(request_id, None, str(e))
            return

        data_url = "data:image/jpeg;base64," + base64.b64encode(frame).decode("ascii")
        self._fulfil(request_id, data_url, None)
