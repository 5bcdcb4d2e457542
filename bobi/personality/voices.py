"""Voice catalogs for the supported realtime LLM providers.

Voice names are passed to the provider's speech configuration when a
session is opened.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VoiceInfo:
    """Information about a provider voice.

    Attributes:
        name: Voice identifier used in the provider API (e.g., "Achird", "coral").
        description: Short description of the voice character.
        personality_fit: Suggested use case for this voice.
    """

    name: str
    description: str
    personality_fit: str


GEMINI_VOICES: dict[str, VoiceInfo] = {
    "Achird": VoiceInfo("Achird", "Friendly", "Default warm companion"),
    "Sulafat": VoiceInfo("Sulafat", "Warm", "Caring, empathetic"),
    "Puck": VoiceInfo("Puck", "Upbeat", "Energetic, fun"),
    "Zephyr": VoiceInfo("Zephyr", "Bright", "Cheerful, positive"),
    "Kore": VoiceInfo("Kore", "Firm", "Calm co-driver"),
    "Charon": VoiceInfo("Charon", "Informative", "Factual, navigator-like"),
    "Fenrir": VoiceInfo("Fenrir", "Excitable", "Enthusiastic, animated"),
    "Leda": VoiceInfo("Leda", "Youthful", "Young, casual"),
    "Aoede": VoiceInfo("Aoede", "Breezy", "Relaxed, easy-going"),
    "Orus": VoiceInfo("Orus", "Firm", "Strong, decisive"),
}

OPENAI_VOICES: dict[str, VoiceInfo] = {
    "alloy": VoiceInfo("alloy", "Neutral", "Balanced default"),
    "ash": VoiceInfo("ash", "Warm", "Conversational, friendly"),
    "ballad": VoiceInfo("ballad", "Soft", "Expressive, gentle"),
    "coral": VoiceInfo("coral", "Clear", "Professional"),
    "echo": VoiceInfo("echo", "Deep", "Authoritative"),
    "sage": VoiceInfo("sage", "Steady", "Wise, measured"),
    "shimmer": VoiceInfo("shimmer", "Bright", "Lively, playful"),
    "verse": VoiceInfo("verse", "Versatile", "Dramatic, theatrical"),
    "marin": VoiceInfo("marin", "Natural", "High quality general use"),
    "cedar": VoiceInfo("cedar", "Natural", "High quality general use"),
}

VOICE_CATALOGS: dict[str, dict[str, VoiceInfo]] = {
    "gemini": GEMINI_VOICES,
    "openai": OPENAI_VOICES,
}


def get_voice(provider: str, name: str) -> VoiceInfo:
    """Get voice info by provider and name (case-insensitive).

    Raises:
        KeyError: If the provider or the voice name is unknown.
    """
    if provider not in VOICE_CATALOGS:
        raise KeyError(f"Unknown provider '{provider}'")
    catalog = VOICE_CATALOGS[provider]

    if name in catalog:
        return catalog[name]

    name_lower = name.lower()
    for key, voice in catalog.items():
        if key.lower() == name_lower:
            return voice

    raise KeyError(
        f"Voice '{name}' not found for {provider}. "
        f"Available voices: {', '.join(catalog.keys())}"
    )


def list_voices(provider: str) -> list[VoiceInfo]:
    return list(VOICE_CATALOGS[provider].values())
