"""Provider-neutral LLM realtime session interface.

Each provider adapter translates its wire protocol into LLMEvent objects
with one fixed set of kinds, so the orchestrator never sees provider or
protocol-version specific event names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

if TYPE_CHECKING:
    from bobi.core.config import Settings

EVENT_KINDS = frozenset({
    "connected",
    "disconnected",
    "response_started",
    "text_delta",
    "text_done",
    "audio_delta",
    "audio_done",
    "response_done",
    "tool_call",
    "input_transcript",
    "speech_started",
    "speech_stopped",
    "response_cancelled",
    "error",
})


@dataclass
class LLMEvent:
    """Normalized event received from an LLM session.

    Attributes:
        kind: One of EVENT_KINDS.
        text: Text delta, full text, transcript or error message.
        audio: PCM16 audio bytes (for kind="audio_delta").
        call_id: Tool call id (for kind="tool_call").
        name: Tool name (for kind="tool_call").
        arguments: Tool arguments, a dict or the raw JSON string.
        turn_id: Response turn the event belongs to, if known.
        session_id: Provider session id (for kind="connected").
    """

    kind: str
    text: str = ""
    audio: bytes = b""
    call_id: str = ""
    name: str = ""
    arguments: dict[str, Any] | str = field(default_factory=dict)
    turn_id: str | None = None
    session_id: str | None = None


@dataclass
class SessionConfig:
    """Configuration for an LLM realtime session.

    Attributes:
        model: Provider model name.
        voice: Provider voice name for speech output.
        instructions: System instructions.
        tools: Provider-shaped tool declarations (empty if none).
        vad_sensitivity: Voice activity detection sensitivity ("LOW", "MEDIUM", "HIGH").
    """

    model: str
    voice: str
    instructions: str
    tools: list = field(default_factory=list)
    vad_sensitivity: str = "MEDIUM"


class LLMSession(ABC):
    """Bidirectional realtime conversation with an LLM."""

    provider: str = ""

    @abstractmethod
    async def connect(self) -> None:
        """Open the session and send its configuration."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @property
    @abstractmethod
    def session_id(self) -> str | None:
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Add a user text message and ask for a response."""
        ...

    @abstractmethod
    async def send_audio(self, chunk: bytes) -> None:
        """Append PCM16 microphone audio to the input buffer."""
        ...

    @abstractmethod
    async def commit_audio(self) -> None:
        """Mark the end of the buffered user utterance."""
        ...

    @abstractmethod
    async def send_image(self, image_data_url: str, prompt: str | None = None) -> None:
        """Show the model an image given as a data URL."""
        ...

    @abstractmethod
    async def submit_tool_result(
        self,
        call_id: str,
        name: str,
        output: dict[str, Any],
        respond: bool = True,
    ) -> None:
        """Return a tool call's output to the model.

        Args:
            respond: Ask the model to continue right away. Pass False when
                another message (such as an image) follows immediately.
        """
        ...

    @abstractmethod
    async def cancel_response(self) -> None:
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[LLMEvent]:
        """Yield normalized events until the session ends."""
        ...


def create_session(settings: Settings, config: SessionConfig) -> LLMSession:
    """Build the session adapter for the configured provider.

    Raises:
        ValueError: If the provider is unknown.
    """
    if settings.llm_provider == "gemini":
        from bobi.llm.gemini import GeminiLiveSession

        return GeminiLiveSession(api_key=settings.gemini_api_key, config=config)

    if settings.llm_provider == "openai":
        from bobi.llm.openai_realtime import OpenAIRealtimeSession

        return OpenAIRealtimeSession(
            api_key=settings.openai_api_key,
            config=config,
            url=settings.openai_realtime_url,
            beta_protocol=settings.openai_beta_protocol,
        )

    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
