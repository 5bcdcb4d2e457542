"""Personality preset loader and manager.

Loads personality JSON files from the personalities directory,
validates them against the voice catalogs, and provides lookup.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bobi.personality.prompts import build_system_instructions
from bobi.personality.voices import VOICE_CATALOGS, get_voice

logger = logging.getLogger(__name__)

_VALID_VAD_SENSITIVITIES = {"LOW", "MEDIUM", "HIGH"}
_TRAITS = ("affection", "verbosity", "humor", "emotionality")


@dataclass(frozen=True)
class Traits:
    """Language-style traits, each 0-100."""

    affection: int = 60
    verbosity: int = 40
    humor: int = 50
    emotionality: int = 50


@dataclass(frozen=True)
class CharacterMimicry:
    name: str
    description: str
    speaking_style: str
    thinking_style: str
    catchphrases: tuple[str, ...] = ()


@dataclass(frozen=True)
class PersonalityConfig:
    """Configuration for a companion personality.

    Attributes:
        name: Display name of the personality.
        voices: Voice name per LLM provider.
        traits: Language-style traits.
        description: Short description of this personality.
        character: Character to imitate, if any.
        vad_sensitivity: Voice activity detection sensitivity ("LOW", "MEDIUM", "HIGH").
    """

    name: str
    voices: dict[str, str]
    traits: Traits = field(default_factory=Traits)
    description: str = ""
    character: CharacterMimicry | None = None
    vad_sensitivity: str = "MEDIUM"

    def voice_for(self, provider: str) -> str:
        """Voice for a provider, falling back to the catalog's first voice."""
        if provider in self.voices:
            return self.voices[provider]
        return next(iter(VOICE_CATALOGS[provider]))

    @property
    def system_instructions(self) -> str:
        return build_system_instructions(self.traits, self.character)


def _validate_personality(data: dict[str, Any], source: str) -> PersonalityConfig:
    """Validate and create a PersonalityConfig from raw JSON data.

    Args:
        data: Parsed JSON dictionary.
        source: File path or identifier for error messages.

    Raises:
        ValueError: If required fields are missing or invalid.
    """
    for required in ("name", "voices"):
        if required not in data:
            raise ValueError(f"Personality '{source}' missing required field: {required}")

    voices = data["voices"]
    if not isinstance(voices, dict) or not voices:
        raise ValueError(f"Personality '{source}' must map providers to voices")
    for provider, voice_name in voices.items():
        try:
            get_voice(provider, voice_name)
        except KeyError as e:
            raise ValueError(
                f"Personality '{source}' uses unknown voice '{voice_name}': {e}"
            ) from e

    raw_traits = data.get("traits", {})
    trait_values: dict[str, int] = {}
    for trait in _TRAITS:
        if trait not in raw_traits:
            continue
        value = int(raw_traits[trait])
        if not 0 <= value <= 100:
            raise ValueError(
                f"Personality '{source}' trait '{trait}' must be 0-100, got {value}"
            )
        trait_values[trait] = value

    character = None
    if data.get("character"):
        c = data["character"]
        character = CharacterMimicry(
            name=c["name"],
            description=c.get("description", ""),
            speaking_style=c.get("speaking_style", ""),
            thinking_style=c.get("thinking_style", ""),
            catchphrases=tuple(c.get("catchphrases", ())),
        )

    vad = data.get("vad_sensitivity", "MEDIUM").upper()
    if vad not in _VALID_VAD_SENSITIVITIES:
        raise ValueError(
            f"Personality '{source}' has invalid vad_sensitivity '{vad}'. "
            f"Must be one of: {_VALID_VAD_SENSITIVITIES}"
        )

    return PersonalityConfig(
        name=data["name"],
        voices=dict(voices),
        traits=Traits(**trait_values),
        description=data.get("description", ""),
        character=character,
        vad_sensitivity=vad,
    )


class PersonalityManager:
    """Loads and manages personality presets from JSON files.

    Args:
        personalities_dir: Path to directory containing personality JSON files.
    """

    def __init__(self, personalities_dir: str | Path) -> None:
        self._dir = Path(personalities_dir)
        self._personalities: dict[str, PersonalityConfig] = {}
        self._load_all()

    def _load_all(self) -> None:
        if not self._dir.exists():
            logger.warning("Personalities directory not found: %s", self._dir)
            return

        for json_file in sorted(self._dir.glob("*.json")):
            try:
                with open(json_file) as f:
                    data = json.load(f)
                personality = _validate_personality(data, str(json_file))
                self._personalities[json_file.stem.lower()] = personality
            except (json.JSONDecodeError, ValueError, KeyError) as e:
                logger.warning("Skipping invalid personality file %s: %s", json_file, e)

    def get_personality(self, name: str) -> PersonalityConfig:
        """Get a personality by name (case-insensitive, matches filename stem).

        Raises:
            KeyError: If the personality is not found.
        """
        key = name.lower()
        if key not in self._personalities:
            available = ", ".join(self._personalities.keys())
            raise KeyError(f"Personality '{name}' not found. Available: {available}")
        return self._personalities[key]

    def list_personalities(self) -> list[str]:
        return sorted(self._personalities.keys())

    def get_default(self) -> PersonalityConfig:
        """Get the 'default' preset, or a built-in one if none was loaded."""
        try:
            return self.get_personality("default")
        except KeyError:
            return PersonalityConfig(
                name="Bobi",
                voices={"gemini": "Achird", "openai": "alloy"},
            )
