"""Session state machine.

Four states govern when the device may talk to the LLM and upload data:

    IDLE → LISTENING        wake()
    LISTENING → DIALOG      start_dialog()
    DIALOG → VISION_CHECK   enter_vision_check()
    VISION_CHECK → DIALOG   exit_vision_check(token)
    any → IDLE              enter_idle() / awake timer expiry
    any awake → LISTENING   standby() (session closed, still listening)

The awake timer only ends a session while LISTENING. Once in DIALOG the
hard dialog cap takes over; its expiry only publishes DIALOG_TIMEOUT and
the orchestrator performs the wrap-up and the final enter_idle().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum, auto

from bobi.core.config import Settings
from bobi.core.device_state import DeviceStateStore
from bobi.core.events import (
    AWAKE_TIMEOUT,
    DIALOG_TIMEOUT,
    LLM_CONNECT_REQUESTED,
    LLM_DISCONNECT_REQUESTED,
    STATE_CHANGED,
    EventBus,
)
from bobi.core.rate_limit import Clock, monotonic_ms
from bobi.hardware.interfaces import EventRecorder

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """States of the companion session.

    Transitions:
        IDLE → LISTENING (wake)
        LISTENING → DIALOG (first utterance or tool call)
        DIALOG ⇄ VISION_CHECK (camera capture outstanding)
        Any → IDLE (sleep, awake timeout, dialog wrap-up)
    """

    IDLE = auto()
    LISTENING = auto()
    DIALOG = auto()
    VISION_CHECK = auto()


_AMBIENT_MOODS = {
    SessionState.IDLE: "sleepy",
    SessionState.LISTENING: "curious",
    SessionState.DIALOG: "happy",
    SessionState.VISION_CHECK: "happy",
}


@dataclass
class SessionContext:
    """Timestamps (ms, from the machine's clock) and ids of the current session.

    All fields are reset on entering IDLE.
    """

    awake_start_time: float | None = None
    dialog_start_time: float | None = None
    last_interaction_time: float | None = None
    session_id: str | None = None
    standby: bool = False


class SessionStateMachine:
    """Drives the companion through its session lifecycle.

    Args:
        settings: Timing configuration.
        store: Device state store (mood changes on state entry).
        bus: Event bus for transitions, timeouts and LLM requests.
        recorder: Dash-cam recorder kept running while idle.
        clock: Millisecond clock used for context timestamps.
    """

    def __init__(
        self,
        settings: Settings,
        store: DeviceStateStore,
        bus: EventBus,
        recorder: EventRecorder | None = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        self._settings = settings
        self._store = store
        self._bus = bus
        self._recorder = recorder
        self._clock = clock

        self._state = SessionState.IDLE
        self._context = SessionContext()
        self._vision_depth = 0
        self._vision_generation = 0
        self._awake_timer: asyncio.TimerHandle | None = None
        self._dialog_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def context(self) -> SessionContext:
        """Copy of the session context."""
        return replace(self._context)

    def is_standby(self) -> bool:
        return self._context.standby

    def is_awake(self) -> bool:
        return self._state != SessionState.IDLE

    def can_upload_data(self) -> bool:
        """Frames and location may only leave the device while awake."""
        return self.is_awake()

    def can_call_llm(self) -> bool:
        return self.is_awake() and self._context.session_id is not None

    def awake_remaining_ms(self) -> float:
        start = self._context.awake_start_time
        if self._state == SessionState.IDLE or start is None:
            return 0.0
        return max(0.0, self._settings.awake_window_ms - (self._clock() - start))

    def dialog_duration_ms(self) -> float:
        start = self._context.dialog_start_time
        if start is None:
            return 0.0
        return self._clock() - start

    def dialog_remaining_ms(self) -> float:
        if self._context.dialog_start_time is None:
            return 0.0
        return max(0.0, self._settings.max_dialog_duration_ms - self.dialog_duration_ms())

    def ambient_mood(self) -> str:
        """Mood the device returns to after a transient reaction."""
        return _AMBIENT_MOODS[self._state]

    def set_session_id(self, session_id: str | None) -> None:
        self._context.session_id = session_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def wake(self) -> None:
        """Wake from IDLE, or refresh the session if already awake."""
        now = self._clock()

        if self._state == SessionState.IDLE:
            logger.info("Waking up.")
            self._context.awake_start_time = now
            self._context.last_interaction_time = now
            self._context.standby = False
            self._store.set_mood("curious")
            self._transition(SessionState.LISTENING)
            self._start_awake_timer()
            self._bus.publish(LLM_CONNECT_REQUESTED)
            return

        if self._context.standby:
            logger.info("Woken from standby, reopening session.")
            self._context.standby = False
            self._context.last_interaction_time = now
            self._store.set_mood("curious")
            self._restart_awake_timer()
            self._bus.publish(LLM_CONNECT_REQUESTED)
            return

        self.record_interaction()

    def enter_idle(self) -> None:
        """Return to passive recording, closing any LLM session."""
        self._clear_timers()
        self._context = SessionContext()
        self._vision_depth = 0
        self._vision_generation += 1

        self._bus.publish(LLM_DISCONNECT_REQUESTED)

        if self._recorder is not None and not self._recorder.is_recording():
            self._recorder.start_recording()

        self._store.set_mood("sleepy")
        self._transition(SessionState.IDLE)

    sleep = enter_idle

    def start_dialog(self) -> bool:
        """Enter DIALOG from LISTENING.

        Returns:
            False if the machine is IDLE (must wake first), True otherwise.
        """
        if self._state == SessionState.IDLE:
            logger.warning("Cannot start dialog while idle; wake first.")
            return False

        if self._state in (SessionState.DIALOG, SessionState.VISION_CHECK):
            self.record_interaction()
            return True

        now = self._clock()
        self._cancel_awake_timer()
        if self._context.dialog_start_time is None:
            self._context.dialog_start_time = now
        self._context.last_interaction_time = now
        self._context.awake_start_time = now
        self._context.standby = False
        self._start_dialog_timer()
        self._store.set_mood("happy")
        self._transition(SessionState.DIALOG)
        return True

    def enter_vision_check(self) -> int | None:
        """Enter VISION_CHECK while a camera capture is outstanding.

        Nested captures are counted; only the last exit returns to DIALOG.

        Returns:
            A token to hand back to exit_vision_check(), or None if the
            machine is not in a dialog. Tokens go stale once the machine
            idles or stands by.
        """
        if self._state == SessionState.VISION_CHECK:
            self._vision_depth += 1
            self._context.last_interaction_time = self._clock()
            return self._vision_generation

        if self._state != SessionState.DIALOG:
            logger.warning("Vision check requires an active dialog (state=%s).", self._state.name)
            return None

        self._vision_depth = 1
        self._context.last_interaction_time = self._clock()
        self._store.set_mood("curious")
        self._transition(SessionState.VISION_CHECK)
        return self._vision_generation

    def exit_vision_check(self, token: int) -> None:
        if token != self._vision_generation:
            logger.debug("Ignoring exit of a vision check from an earlier session.")
            return
        if self._state != SessionState.VISION_CHECK:
            return
        self._vision_depth = max(0, self._vision_depth - 1)
        if self._vision_depth == 0:
            self._transition(SessionState.DIALOG)

    def record_interaction(self) -> None:
        """Note user activity.

        Restarts the awake window while LISTENING. During a dialog only the
        rolling grace window moves; the dialog cap is never extended.
        """
        if self._state == SessionState.IDLE:
            return

        now = self._clock()
        self._context.last_interaction_time = now
        if self._state == SessionState.LISTENING:
            self._restart_awake_timer()
        else:
            self._context.awake_start_time = now

    def standby(self) -> None:
        """Close the LLM session but keep listening for the wake word.

        The awake timer is restarted so an unattended device still falls
        back to IDLE.
        """
        if self._state == SessionState.IDLE:
            logger.warning("Standby requested while idle; ignoring.")
            return

        logger.info("Entering standby.")
        self._clear_timers()
        self._bus.publish(LLM_DISCONNECT_REQUESTED)

        self._context.dialog_start_time = None
        self._context.session_id = None
        self._context.standby = True
        self._context.awake_start_time = self._clock()
        self._vision_depth = 0
        self._vision_generation += 1

        self._store.set_mood("curious")
        self._transition(SessionState.LISTENING)
        self._start_awake_timer()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        logger.info("Transition: %s -> %s", old_state.name, new_state.name)
        self._state = new_state
        self._bus.publish(STATE_CHANGED, new_state, old_state)

    def _start_awake_timer(self) -> None:
        self._cancel_awake_timer()
        loop = asyncio.get_running_loop()
        self._awake_timer = loop.call_later(
            self._settings.awake_window_ms / 1000, self._on_awake_timeout
        )

    def _restart_awake_timer(self) -> None:
        self._context.awake_start_time = self._clock()
        self._start_awake_timer()

    def _cancel_awake_timer(self) -> None:
        if self._awake_timer is not None:
            self._awake_timer.cancel()
            self._awake_timer = None

    def _start_dialog_timer(self) -> None:
        if self._dialog_timer is not None:
            self._dialog_timer.cancel()
        remaining = self._settings.max_dialog_duration_ms - self.dialog_duration_ms()
        loop = asyncio.get_running_loop()
        self._dialog_timer = loop.call_later(max(0.0, remaining) / 1000, self._on_dialog_timeout)

    def _clear_timers(self) -> None:
        self._cancel_awake_timer()
        if self._dialog_timer is not None:
            self._dialog_timer.cancel()
            self._dialog_timer = None

    def _on_awake_timeout(self) -> None:
        self._awake_timer = None
        if self._state != SessionState.LISTENING:
            return
        logger.info("Awake window timeout, returning to idle.")
        self._bus.publish(AWAKE_TIMEOUT)
        self.enter_idle()

    def _on_dialog_timeout(self) -> None:
        self._dialog_timer = None
        if self._state not in (SessionState.DIALOG, SessionState.VISION_CHECK):
            return
        logger.info("Dialog max duration reached.")
        self._bus.publish(DIALOG_TIMEOUT)
