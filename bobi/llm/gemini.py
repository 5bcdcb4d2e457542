"""Gemini Live API session.

Wraps the google-genai SDK's Live API client and translates its server
messages into LLMEvent objects.
"""

from __future__ import annotations

import base64
import logging
import uuid
from typing import Any, AsyncIterator

from google import genai
from google.genai import types

from bobi.llm.base import LLMEvent, LLMSession, SessionConfig

logger = logging.getLogger(__name__)

_VAD_SENSITIVITY_MAP = {
    "LOW": (
        types.StartSensitivity.START_SENSITIVITY_LOW,
        types.EndSensitivity.END_SENSITIVITY_LOW,
    ),
    "MEDIUM": (
        types.StartSensitivity.START_SENSITIVITY_HIGH,
        types.EndSensitivity.END_SENSITIVITY_LOW,
    ),
    "HIGH": (
        types.StartSensitivity.START_SENSITIVITY_HIGH,
        types.EndSensitivity.END_SENSITIVITY_HIGH,
    ),
}


def _decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a ``data:<mime>;base64,<payload>`` URL into mime type and bytes."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Expected a base64 data URL")
    header, payload = data_url.split(",", 1)
    mime_type = header[len("data:"):].split(";", 1)[0] or "image/jpeg"
    return mime_type, base64.b64decode(payload)


class GeminiLiveSession(LLMSession):
    """Manages a Gemini Live API WebSocket session.

    Args:
        api_key: Google API key for authentication.
        config: Session configuration.
    """

    provider = "gemini"

    def __init__(self, api_key: str, config: SessionConfig) -> None:
        self._api_key = api_key
        self._config = config
        self._client: genai.Client | None = None
        self._session = None
        self._session_cm = None
        self._connected = False
        self._session_id: str | None = None
        self._turn_id: str | None = None
        self._turn_text: list[str] = []
        self._tool_call_names: dict[str, str] = {}

    async def connect(self) -> None:
        """Open WebSocket connection and send setup message."""
        if not self._api_key:
            raise RuntimeError("Gemini API key is not configured.")

        self._client = genai.Client(api_key=self._api_key)

        start_sens, end_sens = _VAD_SENSITIVITY_MAP.get(
            self._config.vad_sensitivity,
            _VAD_SENSITIVITY_MAP["MEDIUM"],
        )

        live_config = types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=self._config.instructions,
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(
                        voice_name=self._config.voice,
                    )
                ),
            ),
            tools=self._config.tools if self._config.tools else None,
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
            realtime_input_config=types.RealtimeInputConfig(
                automatic_activity_detection=types.AutomaticActivityDetection(
                    disabled=False,
                    start_of_speech_sensitivity=start_sens,
                    end_of_speech_sensitivity=end_sens,
                ),
                activity_handling=types.ActivityHandling.START_OF_ACTIVITY_INTERRUPTS,
            ),
            context_window_compression=types.ContextWindowCompressionConfig(
                sliding_window=types.SlidingWindow(),
            ),
        )

        self._session_cm = self._client.aio.live.connect(
            model=self._config.model,
            config=live_config,
        )
        self._session = await self._session_cm.__aenter__()
        self._connected = True
        self._session_id = f"gemini_{uuid.uuid4().hex[:12]}"
        logger.info(
            "Gemini session connected (model=%s, voice=%s)",
            self._config.model,
            self._config.voice,
        )

    def _require_session(self):
        if not self._connected or self._session is None:
            raise RuntimeError("Gemini session is not connected.")
        return self._session

    async def send_text(self, text: str) -> None:
        session = self._require_session()
        await session.send_client_content(
            turns=types.Content(role="user", parts=[types.Part(text=text)]),
            turn_complete=True,
        )

    async def send_audio(self, chunk: bytes) -> None:
        """Send a chunk of PCM audio to Gemini.

        Args:
            chunk: Raw PCM audio bytes (16kHz/16-bit/mono).

        Raises:
            RuntimeError: If not connected.
        """
        session = self._require_session()
        await session.send_realtime_input(
            audio=types.Blob(data=chunk, mime_type="audio/pcm;rate=16000"),
        )

    async def commit_audio(self) -> None:
        session = self._require_session()
        await session.send_realtime_input(audio_stream_end=True)

    async def send_image(self, image_data_url: str, prompt: str | None = None) -> None:
        session = self._require_session()
        mime_type, data = _decode_data_url(image_data_url)
        await session.send_realtime_input(video=types.Blob(data=data, mime_type=mime_type))
        if prompt:
            await self.send_text(prompt)

    async def submit_tool_result(
        self,
        call_id: str,
        name: str,
        output: dict[str, Any],
        respond: bool = True,
    ) -> None:
        """Send the result of a function call back to Gemini.

        Gemini continues on its own after a tool response, so respond is ignored.

        Raises:
            RuntimeError: If not connected.
        """
        session = self._require_session()
        name = self._tool_call_names.pop(call_id, name)
        await session.send_tool_response(
            function_responses=[
                types.FunctionResponse(id=call_id, name=name, response=output)
            ]
        )

    async def cancel_response(self) -> None:
        # Live API interrupts on user speech; there is no explicit cancel message.
        logger.debug("Gemini responses are interrupted by user activity; cancel ignored.")

    async def events(self) -> AsyncIterator[LLMEvent]:
        """Yield normalized events from Gemini.

        The SDK's receive() ends after each completed turn, so it is
        re-entered until the session closes or a pass yields nothing.

        Raises:
            RuntimeError: If not connected.
        """
        self._require_session()
        yield LLMEvent(kind="connected", session_id=self._session_id)

        try:
            while self._connected and self._session is not None:
                received = False
                async for message in self._session.receive():
                    received = True
                    for event in self._parse_message(message):
                        yield event
                if not received:
                    break
        except Exception as e:
            logger.error("Error receiving from Gemini: %s", e)
            yield LLMEvent(kind="error", text=str(e))
        finally:
            self._connected = False

        yield LLMEvent(kind="disconnected")

    async def close(self) -> None:
        """Close the WebSocket session gracefully."""
        if self._session_cm is not None:
            try:
                await self._session_cm.__aexit__(None, None, None)
            except Exception as e:
                logger.warning("Error closing Gemini session: %s", e)
            finally:
                self._session = None
                self._session_cm = None
                self._connected = False
                self._tool_call_names.clear()
                logger.info("Gemini session closed.")

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def model(self) -> str:
        return self._config.model

    def _ensure_turn(self) -> list[LLMEvent]:
        if self._turn_id is not None:
            return []
        self._turn_id = f"turn_{uuid.uuid4().hex[:8]}"
        self._turn_text = []
        return [LLMEvent(kind="response_started", turn_id=self._turn_id)]

    def _parse_message(self, message: types.LiveServerMessage) -> list[LLMEvent]:
        """Parse a raw SDK message into normalized LLMEvent(s).

        Returns:
            List of LLMEvent objects (may be empty or multiple).
        """
        results: list[LLMEvent] = []

        if message.server_content:
            sc = message.server_content

            if sc.model_turn and sc.model_turn.parts:
                for part in sc.model_turn.parts:
                    if part.inline_data and part.inline_data.data:
                        results.extend(self._ensure_turn())
                        results.append(LLMEvent(
                            kind="audio_delta",
                            audio=part.inline_data.data,
                            turn_id=self._turn_id,
                        ))

            if sc.output_transcription and sc.output_transcription.text:
                results.extend(self._ensure_turn())
                self._turn_text.append(sc.output_transcription.text)
                results.append(LLMEvent(
                    kind="text_delta",
                    text=sc.output_transcription.text,
                    turn_id=self._turn_id,
                ))

            if sc.input_transcription and sc.input_transcription.text:
                results.append(LLMEvent(
                    kind="input_transcript",
                    text=sc.input_transcription.text,
                ))

            if sc.interrupted:
                results.append(LLMEvent(kind="speech_started"))
                results.append(LLMEvent(kind="response_cancelled", turn_id=self._turn_id))
                self._turn_id = None
                self._turn_text = []

            if sc.turn_complete and self._turn_id is not None:
                turn_id = self._turn_id
                if self._turn_text:
                    results.append(LLMEvent(
                        kind="text_done", text="".join(self._turn_text), turn_id=turn_id
                    ))
                results.append(LLMEvent(kind="audio_done", turn_id=turn_id))
                results.append(LLMEvent(kind="response_done", turn_id=turn_id))
                self._turn_id = None
                self._turn_text = []

        if message.tool_call:
            for fc in message.tool_call.function_calls:
                call_id = fc.id or ""
                name = fc.name or ""
                self._tool_call_names[call_id] = name
                results.append(LLMEvent(
                    kind="tool_call",
                    call_id=call_id,
                    name=name,
                    arguments=fc.args or {},
                    turn_id=self._turn_id,
                ))

        if message.go_away:
            logger.warning("Gemini session ending (go_away).")

        return results
