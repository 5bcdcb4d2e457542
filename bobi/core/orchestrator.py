"""Companion orchestrator: ties the session state machine to the LLM.

The orchestrator is the only writer of the device state and session context
besides the state machine itself. It reacts to three kinds of input:

- inbound signals from UI/device collaborators (wake, text, audio, sensors,
  captured frames), either as JSON messages or direct method calls
- normalised events from the LLM session
- state machine requests published on the event bus (open/close the LLM
  session, dialog timeout)

Everything it produces for the outside world is an OutboundMessage
published on the OUTBOUND topic.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import random
from typing import Any, Callable, Coroutine

from bobi.core.config import Settings
from bobi.core.device_state import DeviceState, DeviceStateStore
from bobi.core.events import (
    AWAKE_TIMEOUT,
    DEVICE_CHANGED,
    DIALOG_TIMEOUT,
    LLM_CONNECT_REQUESTED,
    LLM_DISCONNECT_REQUESTED,
    OUTBOUND,
    STATE_CHANGED,
    EventBus,
    OutboundMessage,
    now_ms,
)
from bobi.core.pending import PendingRequests
from bobi.core.rate_limit import Cache, Clock, monotonic_ms
from bobi.core.state_machine import SessionState, SessionStateMachine
from bobi.hardware.interfaces import EventRecorder
from bobi.llm.base import LLMEvent, LLMSession, SessionConfig, create_session
from bobi.personality.manager import PersonalityConfig, PersonalityManager
from bobi.personality.prompts import (
    GIMBAL_PROMPT,
    GREETING_PROMPT,
    IMU_CHECK_PROMPT,
    IMU_URGENT_PROMPT,
    WRAP_UP_PROMPT,
)
from bobi.tools.dispatcher import END_CONVERSATION, ToolDispatcher, ToolResult
from bobi.wake_word.detector import WakeWordDetector

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Settings, SessionConfig], LLMSession]

IMU_LEVELS = ("L0", "L1", "L2")
GIMBAL_YAW_NUDGE = 15.0
IMU_SOUNDS = {"L0": "bump_light", "L1": "bump_medium", "L2": "collision_warning"}
CAPTURE_PROMPT = "Here is the photo you asked for. Describe what you see."

_DIALOG_STATES = (SessionState.DIALOG, SessionState.VISION_CHECK)
_GPS_FIELDS = ("lat", "lng", "speed_kmh", "heading", "accuracy")


class Orchestrator:
    """Runs the companion: session lifecycle, LLM traffic and local feedback.

    Args:
        settings: Application settings.
        recorder: Dash-cam recorder, kept running while idle.
        wake_detector: Wake word detector. Defaults to a manual-trigger-only one.
        session_factory: Builds LLM sessions. Defaults to create_session.
        rng: Random source for expression, pose and nudge variants.
        clock: Millisecond clock shared by timers and rate limiters.
    """

    def __init__(
        self,
        settings: Settings,
        recorder: EventRecorder | None = None,
        wake_detector: WakeWordDetector | None = None,
        session_factory: SessionFactory | None = None,
        rng: random.Random | None = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        self._settings = settings
        self._recorder = recorder
        self._rng = rng or random.Random()
        self._clock = clock
        self._session_factory = session_factory or create_session

        self._bus = EventBus()
        self._store = DeviceStateStore(self._bus, rng=self._rng)
        self._state_machine = SessionStateMachine(
            settings, self._store, self._bus, recorder=recorder, clock=clock
        )
        self._frames = PendingRequests()
        self._location_cache: Cache = Cache(settings.location_cache_ms, clock)

        self._dispatcher = ToolDispatcher()
        self._dispatcher.register_builtin_tools(
            settings,
            self._state_machine,
            self._store,
            self.request_frame,
            self._location_cache,
            clock,
        )

        self._wake_detector = wake_detector or WakeWordDetector(
            None,
            wake_word=settings.wake_word,
            sensitivity=settings.wake_word_sensitivity,
        )

        self._personality_manager = PersonalityManager(settings.personalities_dir)
        self._personality = self._load_personality(settings.default_personality)

        self._session: LLMSession | None = None
        self._connect_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._transcript: list[dict[str, Any]] = []
        self._last_error: str | None = None
        self._running = False

        self._bus.subscribe(STATE_CHANGED, self._on_state_changed)
        self._bus.subscribe(DEVICE_CHANGED, self._on_device_changed)
        self._bus.subscribe(LLM_CONNECT_REQUESTED, self._on_connect_requested)
        self._bus.subscribe(LLM_DISCONNECT_REQUESTED, self._on_disconnect_requested)
        self._bus.subscribe(AWAKE_TIMEOUT, self._on_awake_timeout)
        self._bus.subscribe(DIALOG_TIMEOUT, self._on_dialog_timeout)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> DeviceStateStore:
        return self._store

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._state_machine

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    @property
    def wake_detector(self) -> WakeWordDetector:
        return self._wake_detector

    @property
    def session(self) -> LLMSession | None:
        return self._session

    @property
    def personality(self) -> PersonalityConfig:
        return self._personality

    @property
    def transcript(self) -> list[dict[str, Any]]:
        """Utterances of the active session, oldest first."""
        return list(self._transcript)

    def status(self) -> dict[str, Any]:
        """Snapshot of the session for UI status broadcasts."""
        sm = self._state_machine
        return {
            "state": sm.state.name,
            "standby": sm.is_standby(),
            "realtimeStatus": self._store.realtime_status,
            "realtimeModel": self._store.realtime_model,
            "sessionId": sm.context.session_id,
            "dvrRecording": bool(self._recorder and self._recorder.is_recording()),
            "awakeRemainingMs": round(sm.awake_remaining_ms()),
            "dialogDurationMs": round(sm.dialog_duration_ms()),
            "dialogRemainingMs": round(sm.dialog_remaining_ms()),
            "personality": self._personality.name,
            "device": self._store.snapshot().to_dict(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Enter passive recording and start listening for the wake word."""
        self._running = True
        self._state_machine.enter_idle()
        await self._wake_detector.start(self._on_wake_word)
        logger.info(
            "Orchestrator started (provider=%s, personality=%s).",
            self._settings.llm_provider,
            self._personality.name,
        )
        self._broadcast_status()

    async def stop(self) -> None:
        """Close the LLM session, stop the detector and the recorder."""
        self._running = False
        self._wake_detector.stop()
        if self._connect_task is not None:
            self._connect_task.cancel()
        self._state_machine.enter_idle()
        self._cancel_timers()

        tasks = [t for t in self._tasks if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._recorder is not None and self._recorder.is_recording():
            self._recorder.stop_recording()
        logger.info("Orchestrator stopped.")

    # ------------------------------------------------------------------
    # Inbound signals
    # ------------------------------------------------------------------

    async def handle_client_message(self, message: dict[str, Any]) -> None:
        """Route an inbound {"type", "payload"} message from a collaborator."""
        msg_type = message.get("type")
        payload = message.get("payload") or {}

        if msg_type == "wake":
            await self.wake()
        elif msg_type == "sleep":
            self._state_machine.enter_idle()
        elif msg_type == "text_input":
            await self.text_input(str(payload.get("text", "")))
        elif msg_type == "audio_chunk":
            await self.audio_chunk(payload.get("audio", ""))
        elif msg_type == "audio_commit":
            await self.audio_commit()
        elif msg_type == "cancel_response":
            await self.cancel_response()
        elif msg_type == "frame_captured":
            self.frame_captured(
                payload.get("requestId", ""),
                payload.get("imageDataUrl"),
                payload.get("error"),
            )
        elif msg_type == "imu_event":
            await self.imu_event(payload.get("level", ""))
        elif msg_type == "gimbal_touched":
            await self.gimbal_touched()
        elif msg_type == "gps_update":
            self.gps_update(**payload)
        elif msg_type == "set_personality":
            self.set_personality(str(payload.get("name", "")))
        elif msg_type == "get_status":
            self._broadcast_status()
        else:
            logger.warning("Unknown client message type: %s", msg_type)

    async def wake(self) -> None:
        """Manual wake from the UI, routed through the wake word detector."""
        if not await self._wake_detector.trigger():
            self._state_machine.wake()

    async def text_input(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        session = self._session
        if session is None or not session.is_connected:
            logger.warning("Text input ignored: LLM not connected.")
            return

        self._state_machine.start_dialog()
        self._state_machine.record_interaction()
        self._append_transcript("user", text)
        try:
            await session.send_text(text)
        except Exception as e:
            logger.error("Failed to send text to LLM: %s", e)

    async def audio_chunk(self, audio_b64: str) -> None:
        """Forward base64 PCM16 microphone audio to the LLM.

        Streaming audio is not user activity by itself; speech detection
        and transcripts move the session timers instead.
        """
        session = self._session
        if session is None or not session.is_connected:
            return
        try:
            chunk = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning("Dropping malformed audio chunk: %s", e)
            return
        try:
            await session.send_audio(chunk)
        except Exception as e:
            logger.error("Failed to send audio to LLM: %s", e)

    async def audio_commit(self) -> None:
        session = self._session
        if session is None or not session.is_connected:
            return
        try:
            await session.commit_audio()
        except Exception as e:
            logger.error("Failed to commit audio: %s", e)

    async def cancel_response(self) -> None:
        """Stop the model mid-reply (user barge-in from the UI)."""
        session = self._session
        if session is None or not session.is_connected:
            return
        self._state_machine.record_interaction()
        try:
            await session.cancel_response()
        except Exception as e:
            logger.error("Failed to cancel LLM response: %s", e)
        self._emit("audio_clear", {"reason": "user_cancel"})

    def frame_captured(
        self,
        request_id: str,
        image_data_url: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Fulfil an outstanding request_frame.

        Returns:
            False if the request is unknown or already timed out.
        """
        if error or not image_data_url:
            logger.warning("Frame request %s failed: %s", request_id, error or "no image")
            return self._frames.fulfill(request_id, None)
        return self._frames.fulfill(request_id, image_data_url)

    async def request_frame(
        self, camera: str, max_width: int, quality: float
    ) -> dict[str, Any] | None:
        """Ask the camera owner for a frame and wait for frame_captured."""
        request_id = self._frames.create("frame")
        self._emit("request_frame", {
            "requestId": request_id,
            "camera": camera,
            "maxWidth": max_width,
            "quality": quality,
        })
        image_data_url = await self._frames.wait(
            request_id, self._settings.frame_request_timeout_ms / 1000
        )
        if not image_data_url:
            return None
        return {"camera": camera, "ts": now_ms(), "imageDataUrl": image_data_url}

    async def imu_event(self, level: str) -> None:
        """React to a motion event.

        L0 flashes a surprised face. L1 looks concerned and, during a dialog,
        asks the model to check on the user. L2 also saves an event clip and
        always asks for an urgent safety check when a session is open.
        """
        if level not in IMU_LEVELS:
            logger.warning("Ignoring IMU event with unknown level: %r", level)
            return

        logger.info("IMU event %s in state %s", level, self._state_machine.state.name)
        self._store.update_imu(event_level=level)

        if level == "L0":
            self._store.set_mood("surprised")
            self._emit("local_feedback", {"expression": "surprised", "sound": IMU_SOUNDS[level]})
            self._schedule("mood_revert", self._settings.imu_flash_revert_ms, self._revert_mood)
            return

        self._cancel_timer("mood_revert")
        self._store.set_mood("concerned")
        self._emit("local_feedback", {"expression": "concerned", "sound": IMU_SOUNDS[level]})

        if level == "L1":
            if self._state_machine.state in _DIALOG_STATES:
                await self._send_prompt(IMU_CHECK_PROMPT)
            return

        if self._recorder is not None:
            event_id = f"collision_{int(now_ms())}"
            clips = self._recorder.save_event_clips(event_id)
            self._emit("event_clip_saved", {"eventId": event_id, "clips": clips})
        await self._send_prompt(IMU_URGENT_PROMPT)

    async def gimbal_touched(self) -> None:
        """Flash surprise and nudge the head sideways, then settle back."""
        pose = self._store.snapshot().head_pose
        nudge = self._rng.choice((GIMBAL_YAW_NUDGE, -GIMBAL_YAW_NUDGE))
        self._store.set_mood("surprised")
        self._store.update(head_pose={"yaw": pose.yaw + nudge, "pitch": pose.pitch, "roll": 0.0})
        self._emit("local_feedback", {"expression": "surprised", "sound": "touched", "motion": "wiggle"})
        self._schedule("mood_revert", self._settings.gimbal_revert_ms, self._revert_mood)

        if self._state_machine.state in _DIALOG_STATES:
            await self._send_prompt(GIMBAL_PROMPT)

    def gps_update(self, **fields: Any) -> None:
        updates = {k: float(v) for k, v in fields.items() if k in _GPS_FIELDS and v is not None}
        if not updates:
            logger.warning("GPS update without position fields: %s", fields)
            return
        self._store.update_gps(**updates)
        self._location_cache.invalidate()

    def set_personality(self, name: str) -> bool:
        """Select the personality for the next LLM session.

        Returns:
            False if no preset with that name exists.
        """
        try:
            self._personality = self._personality_manager.get_personality(name)
        except KeyError as e:
            logger.warning("%s", e)
            return False
        logger.info("Personality set to %s (applies to the next session).", self._personality.name)
        self._broadcast_status()
        return True

    # ------------------------------------------------------------------
    # LLM session lifecycle
    # ------------------------------------------------------------------

    def _on_connect_requested(self) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            logger.debug("LLM connect already in progress.")
            return
        if self._session is not None and self._session.is_connected:
            logger.debug("LLM session already open.")
            return
        self._connect_task = self._spawn(self._connect_llm())

    def _on_disconnect_requested(self) -> None:
        self._cancel_timer("greeting")
        session = self._session
        self._session = None

        if self._receive_task is not None:
            self._receive_task.cancel()
            self._receive_task = None

        if session is not None:
            self._spawn(self._close_session(session))
            self._store.set_realtime_status("disconnected")
            self._broadcast_status()

    async def _connect_llm(self) -> None:
        provider = self._settings.llm_provider
        personality = self._personality
        config = SessionConfig(
            model=(
                self._settings.gemini_model if provider == "gemini"
                else self._settings.openai_model
            ),
            voice=personality.voice_for(provider),
            instructions=personality.system_instructions,
            tools=self._dispatcher.get_tool_declarations(dialect=provider) or [],
            vad_sensitivity=personality.vad_sensitivity,
        )

        try:
            session = self._session_factory(self._settings, config)
        except Exception as e:
            self._on_connect_failed(e)
            return

        self._store.set_realtime_status("connecting", session.model)
        self._broadcast_status()

        try:
            await session.connect()
        except Exception as e:
            self._on_connect_failed(e)
            return

        sm = self._state_machine
        if not sm.is_awake() or sm.is_standby():
            logger.info("Session no longer wanted after connecting; closing it.")
            await self._close_session(session)
            self._store.set_realtime_status("disconnected")
            self._broadcast_status()
            return

        self._session = session
        self._last_error = None
        if session.session_id:
            sm.set_session_id(session.session_id)
        self._store.set_realtime_status("connected", session.model)
        logger.info("LLM session connected (provider=%s, model=%s).", provider, session.model)
        self._broadcast_status()

        self._receive_task = self._spawn(self._receive_loop(session))
        self._schedule("greeting", self._settings.greeting_delay_ms, self._send_greeting)

    def _on_connect_failed(self, error: Exception) -> None:
        logger.error("Failed to connect to LLM: %s", error)
        self._store.set_realtime_status("error")
        self._emit("error", {"message": f"LLM connection failed: {error}"})
        self._broadcast_status()

    async def _close_session(self, session: LLMSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning("Error closing LLM session: %s", e)

    async def _receive_loop(self, session: LLMSession) -> None:
        """Consume session events until it ends or is replaced."""
        try:
            async for event in session.events():
                if session is not self._session:
                    break
                self._handle_llm_event(session, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("LLM receive loop failed: %s", e)
            self._last_error = str(e)

        if session is self._session:
            # Dropped by the remote side, not by us.
            logger.warning("LLM session ended unexpectedly.")
            self._session = None
            self._receive_task = None
            self._state_machine.set_session_id(None)
            self._store.set_realtime_status("error" if self._last_error else "disconnected")
            if self._last_error:
                self._emit("error", {"message": f"LLM session lost: {self._last_error}"})
            self._broadcast_status()

    def _handle_llm_event(self, session: LLMSession, event: LLMEvent) -> None:
        """Route a single normalised LLM event."""
        kind = event.kind

        if kind == "connected":
            if event.session_id:
                self._state_machine.set_session_id(event.session_id)

        elif kind == "text_delta":
            self._emit("llm_text_delta", {"text": event.text}, turn_id=event.turn_id)

        elif kind == "text_done":
            self._append_transcript("assistant", event.text)
            self._emit("llm_text_done", {"text": event.text}, turn_id=event.turn_id)

        elif kind == "audio_delta":
            self._emit(
                "llm_audio_delta",
                {"audio": base64.b64encode(event.audio).decode("ascii")},
                turn_id=event.turn_id,
            )

        elif kind == "audio_done":
            self._emit("llm_audio_done", {}, turn_id=event.turn_id)

        elif kind == "input_transcript":
            self._state_machine.start_dialog()
            self._state_machine.record_interaction()
            self._append_transcript("user", event.text)
            self._emit("user_transcript", {"text": event.text})

        elif kind in ("speech_started", "response_cancelled"):
            if kind == "speech_started":
                self._state_machine.record_interaction()
            self._emit("audio_clear", {"reason": kind}, turn_id=event.turn_id)

        elif kind == "tool_call":
            self._spawn(self._handle_tool_call(session, event))

        elif kind == "error":
            logger.error("LLM error: %s", event.text)
            self._last_error = event.text
            self._emit("error", {"message": event.text})

        else:
            logger.debug("LLM event: %s", kind)

    async def _handle_tool_call(self, session: LLMSession, event: LLMEvent) -> None:
        name, call_id = event.name, event.call_id
        logger.info("Tool call: %s(%s)", name, event.arguments)

        if name == END_CONVERSATION:
            await self._submit_tool_result(session, ToolResult(call_id, result={"success": True}), name)
            self._schedule("farewell", self._settings.farewell_grace_ms, self._state_machine.standby)
            return

        self._state_machine.start_dialog()
        vision_token = None
        if name == "capture_frame":
            vision_token = self._state_machine.enter_vision_check()
        try:
            result = await self._dispatcher.execute_tool(name, event.arguments, call_id)
        finally:
            if vision_token is not None:
                self._state_machine.exit_vision_check(vision_token)

        self._emit("tool_result", {"name": name, "callId": call_id, "ok": result.ok, "error": result.error})
        await self._submit_tool_result(session, result, name)

    async def _submit_tool_result(self, session: LLMSession, result: ToolResult, name: str) -> None:
        if session is not self._session or not session.is_connected:
            logger.info("Discarding result of %s: session is gone.", name)
            return

        image = None
        if result.ok and isinstance(result.result, dict):
            image = result.result.get("imageDataUrl")

        try:
            if image:
                output = {k: v for k, v in result.result.items() if k != "imageDataUrl"}
                output["status"] = "captured"
                await session.submit_tool_result(result.call_id, name, output, respond=False)
                await session.send_image(image, CAPTURE_PROMPT)
            else:
                await session.submit_tool_result(result.call_id, name, result.to_output())
        except Exception as e:
            logger.error("Failed to submit result of %s: %s", name, e)

    async def _send_prompt(self, text: str) -> None:
        """Inject a system prompt into the open session, if any."""
        session = self._session
        if session is None or not session.is_connected:
            logger.debug("No LLM session for prompt: %s", text)
            return
        try:
            await session.send_text(text)
        except Exception as e:
            logger.error("Failed to send prompt to LLM: %s", e)

    def _send_greeting(self) -> None:
        if self._session is not None and self._session.is_connected:
            self._spawn(self._send_prompt(GREETING_PROMPT))

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------

    async def _on_wake_word(self) -> None:
        self._state_machine.wake()

    def _on_state_changed(self, new_state: SessionState, old_state: SessionState) -> None:
        if new_state == SessionState.IDLE:
            self._cancel_timers()
            self._transcript.clear()
            self._last_error = None
            self._store.set_realtime_status("disconnected")
        if new_state in _DIALOG_STATES:
            self._wake_detector.pause()
        else:
            self._wake_detector.resume()
        self._emit("state_change", {"state": new_state.name, "previous": old_state.name})
        self._broadcast_status()

    def _on_device_changed(self, device: DeviceState) -> None:
        self._emit("device_update", device.to_dict())

    def _on_awake_timeout(self) -> None:
        logger.info("Awake window expired without a dialog.")

    def _on_dialog_timeout(self) -> None:
        logger.info("Dialog time limit reached; wrapping up.")
        self._spawn(self._send_prompt(WRAP_UP_PROMPT))
        self._schedule("wrap_up", self._settings.dialog_wrapup_grace_ms, self._state_machine.enter_idle)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def _load_personality(self, name: str) -> PersonalityConfig:
        try:
            return self._personality_manager.get_personality(name)
        except KeyError:
            logger.warning("Personality '%s' not found, falling back to default.", name)
            return self._personality_manager.get_default()

    def _revert_mood(self) -> None:
        self._store.set_mood(self._state_machine.ambient_mood())

    def _append_transcript(self, role: str, text: str) -> None:
        if text:
            self._transcript.append({"role": role, "text": text, "ts": now_ms()})

    def _emit(self, msg_type: str, payload: dict[str, Any], turn_id: str | None = None) -> None:
        self._bus.publish(OUTBOUND, OutboundMessage(msg_type, payload, turn_id=turn_id))

    def _broadcast_status(self) -> None:
        self._emit("status", self.status())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule(self, name: str, delay_ms: float, callback: Callable[[], Any]) -> None:
        """Run callback after delay_ms, replacing any timer with the same name."""
        self._cancel_timer(name)
        loop = asyncio.get_running_loop()
        self._timers[name] = loop.call_later(delay_ms / 1000, self._fire_timer, name, callback)

    def _fire_timer(self, name: str, callback: Callable[[], Any]) -> None:
        self._timers.pop(name, None)
        try:
            callback()
        except Exception:
            logger.exception("Timer '%s' failed", name)

    def _cancel_timer(self, name: str) -> None:
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def _cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
