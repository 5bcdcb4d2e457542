"""OpenAI Realtime API session over a raw WebSocket.

The Realtime API has shipped two sets of event names (the beta names such
as ``response.audio.delta`` and the GA names such as
``response.output_audio.delta``). normalize_event() maps both onto the same
LLMEvent kinds.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from typing import Any, AsyncIterator

import websockets

from bobi.llm.base import LLMEvent, LLMSession, SessionConfig

logger = logging.getLogger(__name__)

# server_vad turn detection
VAD_THRESHOLD = 0.5
PREFIX_PADDING_MS = 300
SILENCE_DURATION_MS = 500

_TEXT_DELTA_EVENTS = {
    "response.text.delta",
    "response.output_text.delta",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
}
_TEXT_DONE_EVENTS = {
    "response.text.done",
    "response.output_text.done",
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
}
_AUDIO_DELTA_EVENTS = {"response.audio.delta", "response.output_audio.delta"}
_AUDIO_DONE_EVENTS = {"response.audio.done", "response.output_audio.done"}


def normalize_event(raw: dict[str, Any]) -> LLMEvent | None:
    """Map a Realtime API server event onto an LLMEvent.

    Args:
        raw: Decoded JSON event from the server.

    Returns:
        The normalized event, or None for events the core does not use.
    """
    event_type = raw.get("type", "")
    turn_id = raw.get("response_id")

    if event_type == "session.created":
        session = raw.get("session") or {}
        return LLMEvent(kind="connected", session_id=session.get("id"))

    if event_type == "response.created":
        response = raw.get("response") or {}
        return LLMEvent(kind="response_started", turn_id=response.get("id"))

    if event_type in _TEXT_DELTA_EVENTS:
        return LLMEvent(kind="text_delta", text=raw.get("delta", ""), turn_id=turn_id)

    if event_type in _TEXT_DONE_EVENTS:
        text = raw.get("text")
        if text is None:
            text = raw.get("transcript", "")
        return LLMEvent(kind="text_done", text=text, turn_id=turn_id)

    if event_type in _AUDIO_DELTA_EVENTS:
        return LLMEvent(
            kind="audio_delta",
            audio=base64.b64decode(raw.get("delta", "")),
            turn_id=turn_id,
        )

    if event_type in _AUDIO_DONE_EVENTS:
        return LLMEvent(kind="audio_done", turn_id=turn_id)

    if event_type == "response.function_call_arguments.done":
        return LLMEvent(
            kind="tool_call",
            call_id=raw.get("call_id", ""),
            name=raw.get("name", ""),
            arguments=raw.get("arguments") or {},
            turn_id=turn_id,
        )

    if event_type == "response.done":
        response = raw.get("response") or {}
        if response.get("status") == "cancelled":
            return LLMEvent(kind="response_cancelled", turn_id=response.get("id"))
        return LLMEvent(kind="response_done", turn_id=response.get("id"))

    if event_type == "response.cancelled":
        return LLMEvent(kind="response_cancelled", turn_id=turn_id)

    if event_type == "conversation.item.input_audio_transcription.completed":
        return LLMEvent(kind="input_transcript", text=raw.get("transcript", ""))

    if event_type == "input_audio_buffer.speech_started":
        return LLMEvent(kind="speech_started")

    if event_type == "input_audio_buffer.speech_stopped":
        return LLMEvent(kind="speech_stopped")

    if event_type == "error":
        error = raw.get("error") or {}
        return LLMEvent(kind="error", text=error.get("message", "Unknown error"))

    return None


class OpenAIRealtimeSession(LLMSession):
    """Manages an OpenAI Realtime API WebSocket session.

    Args:
        api_key: OpenAI API key.
        config: Session configuration.
        url: Realtime endpoint (model is appended as a query parameter).
        beta_protocol: Use the beta session shape and OpenAI-Beta header.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        config: SessionConfig,
        url: str = "wss://api.openai.com/v1/realtime",
        beta_protocol: bool = False,
    ) -> None:
        self._api_key = api_key
        self._config = config
        self._url = url
        self._beta = beta_protocol
        self._ws = None
        self._connected = False
        self._session_id: str | None = None

    async def connect(self) -> None:
        if not self._api_key:
            raise RuntimeError("OpenAI API key is not configured.")

        headers = {"Authorization": f"Bearer {self._api_key}"}
        if self._beta:
            headers["OpenAI-Beta"] = "realtime=v1"

        self._ws = await websockets.connect(
            f"{self._url}?model={self._config.model}",
            additional_headers=headers,
            ping_interval=30,
            ping_timeout=10,
        )
        self._connected = True
        await self._send(self._session_update())
        logger.info(
            "OpenAI realtime session connected (model=%s, voice=%s)",
            self._config.model,
            self._config.voice,
        )

    def _session_update(self) -> dict[str, Any]:
        turn_detection = {
            "type": "server_vad",
            "threshold": VAD_THRESHOLD,
            "prefix_padding_ms": PREFIX_PADDING_MS,
            "silence_duration_ms": SILENCE_DURATION_MS,
        }
        if self._beta:
            session: dict[str, Any] = {
                "modalities": ["text", "audio"],
                "instructions": self._config.instructions,
                "voice": self._config.voice,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": "whisper-1"},
                "turn_detection": turn_detection,
                "tools": self._config.tools,
                "tool_choice": "auto",
            }
        else:
            session = {
                "type": "realtime",
                "model": self._config.model,
                "output_modalities": ["audio"],
                "instructions": self._config.instructions,
                "audio": {
                    "input": {
                        "format": {"type": "audio/pcm", "rate": 24000},
                        "transcription": {"model": "whisper-1"},
                        "turn_detection": turn_detection,
                    },
                    "output": {
                        "format": {"type": "audio/pcm", "rate": 24000},
                        "voice": self._config.voice,
                    },
                },
                "tools": self._config.tools,
                "tool_choice": "auto",
            }
        return {"type": "session.update", "session": session}

    async def _send(self, event: dict[str, Any]) -> None:
        if not self._connected or self._ws is None:
            raise RuntimeError("OpenAI realtime session is not connected.")
        event.setdefault("event_id", f"evt_{uuid.uuid4().hex[:12]}")
        logger.debug(">>> %s", event["type"])
        await self._ws.send(json.dumps(event))

    async def send_text(self, text: str) -> None:
        await self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })
        await self._send({"type": "response.create"})

    async def send_audio(self, chunk: bytes) -> None:
        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(chunk).decode("ascii"),
        })

    async def commit_audio(self) -> None:
        await self._send({"type": "input_audio_buffer.commit"})

    async def send_image(self, image_data_url: str, prompt: str | None = None) -> None:
        content: list[dict[str, Any]] = []
        if prompt:
            content.append({"type": "input_text", "text": prompt})
        content.append({"type": "input_image", "image_url": image_data_url})
        await self._send({
            "type": "conversation.item.create",
            "item": {"type": "message", "role": "user", "content": content},
        })
        await self._send({"type": "response.create"})

    async def submit_tool_result(
        self,
        call_id: str,
        name: str,
        output: dict[str, Any],
        respond: bool = True,
    ) -> None:
        await self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": json.dumps(output),
            },
        })
        if respond:
            await self._send({"type": "response.create"})

    async def cancel_response(self) -> None:
        await self._send({"type": "response.cancel"})

    async def events(self) -> AsyncIterator[LLMEvent]:
        if not self._connected or self._ws is None:
            raise RuntimeError("OpenAI realtime session is not connected.")

        try:
            async for message in self._ws:
                try:
                    raw = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON realtime message")
                    continue
                logger.debug("<<< %s", raw.get("type"))
                event = normalize_event(raw)
                if event is None:
                    continue
                if event.kind == "connected":
                    self._session_id = event.session_id
                yield event
        except websockets.ConnectionClosed as e:
            logger.warning("Realtime WebSocket closed: %s", e)
        except Exception as e:
            logger.error("Error receiving from OpenAI realtime: %s", e)
            yield LLMEvent(kind="error", text=str(e))
        finally:
            self._connected = False

        yield LLMEvent(kind="disconnected")

    async def close(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning("Error closing OpenAI realtime session: %s", e)
            finally:
                self._ws = None
                self._connected = False
                self._session_id = None
                logger.info("OpenAI realtime session closed.")

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def model(self) -> str:
        return self._config.model
