"""Tests for the personality configuration system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from bobi.personality.manager import (
    CharacterMimicry,
    PersonalityManager,
    Traits,
    _validate_personality,
)
from bobi.personality.prompts import build_system_instructions
from bobi.personality.voices import (
    GEMINI_VOICES,
    OPENAI_VOICES,
    VoiceInfo,
    get_voice,
    list_voices,
)

PERSONALITIES_DIR = Path(__file__).parent.parent / "config" / "personalities"


class TestVoiceCatalog:
    """Tests for the voice catalogs."""

    def test_all_voices_are_voice_info(self) -> None:
        for catalog in (GEMINI_VOICES, OPENAI_VOICES):
            for voice in catalog.values():
                assert isinstance(voice, VoiceInfo)
                assert voice.name
                assert voice.description
                assert voice.personality_fit

    def test_get_voice_exact(self) -> None:
        voice = get_voice("gemini", "Achird")
        assert voice.name == "Achird"
        assert voice.description == "Friendly"

    def test_get_voice_case_insensitive(self) -> None:
        assert get_voice("gemini", "achird").name == "Achird"
        assert get_voice("openai", "ALLOY").name == "alloy"

    def test_get_voice_unknown_raises(self) -> None:
        with pytest.raises(KeyError, match="not found"):
            get_voice("gemini", "NonexistentVoice")

    def test_voice_from_other_provider_raises(self) -> None:
        with pytest.raises(KeyError):
            get_voice("openai", "Achird")

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(KeyError, match="Unknown provider"):
            get_voice("claude", "alloy")

    def test_list_voices(self) -> None:
        names = {v.name for v in list_voices("openai")}
        assert {"alloy", "ash", "sage"} <= names
        assert len(list_voices("gemini")) == len(GEMINI_VOICES)


class TestPersonalityValidation:
    """Tests for personality validation."""

    def test_valid_personality(self) -> None:
        data = {
            "name": "Test",
            "voices": {"gemini": "Achird", "openai": "alloy"},
            "description": "Test personality",
            "traits": {"humor": 90},
            "vad_sensitivity": "MEDIUM",
        }
        config = _validate_personality(data, "test.json")
        assert config.name == "Test"
        assert config.voice_for("openai") == "alloy"
        assert config.traits.humor == 90
        assert config.traits.affection == 60

    def test_missing_name_raises(self) -> None:
        with pytest.raises(ValueError, match="missing required field: name"):
            _validate_personality({"voices": {"gemini": "Achird"}}, "test.json")

    def test_missing_voices_raises(self) -> None:
        with pytest.raises(ValueError, match="missing required field: voices"):
            _validate_personality({"name": "Test"}, "test.json")

    def test_unknown_voice_raises(self) -> None:
        data = {"name": "Test", "voices": {"gemini": "FakeVoice"}}
        with pytest.raises(ValueError, match="unknown voice"):
            _validate_personality(data, "test.json")

    def test_trait_out_of_range_raises(self) -> None:
        data = {"name": "Test", "voices": {"gemini": "Achird"}, "traits": {"humor": 120}}
        with pytest.raises(ValueError, match="must be 0-100"):
            _validate_personality(data, "test.json")

    def test_invalid_vad_raises(self) -> None:
        data = {"name": "Test", "voices": {"gemini": "Achird"}, "vad_sensitivity": "INVALID"}
        with pytest.raises(ValueError, match="invalid vad_sensitivity"):
            _validate_personality(data, "test.json")

    def test_defaults_applied(self) -> None:
        config = _validate_personality({"name": "Test", "voices": {"gemini": "Achird"}}, "t")
        assert config.description == ""
        assert config.character is None
        assert config.traits == Traits()
        assert config.vad_sensitivity == "MEDIUM"

    def test_vad_case_insensitive(self) -> None:
        data = {"name": "Test", "voices": {"gemini": "Achird"}, "vad_sensitivity": "low"}
        assert _validate_personality(data, "test.json").vad_sensitivity == "LOW"

    def test_voice_falls_back_to_catalog(self) -> None:
        config = _validate_personality({"name": "Test", "voices": {"gemini": "Kore"}}, "t")
        assert config.voice_for("openai") == next(iter(OPENAI_VOICES))


class TestSystemInstructions:
    def test_trait_levels(self) -> None:
        text = build_system_instructions(Traits(affection=95, verbosity=5, humor=50, emotionality=70))
        assert "clingy like a puppy" in text
        assert "extremely terse" in text
        assert "slightly playful" in text
        assert "express feelings where it fits" in text

    def test_character_section(self) -> None:
        character = CharacterMimicry(
            name="Captain", description="A ship captain", speaking_style="Nautical",
            thinking_style="Bold", catchphrases=("Ahoy!",),
        )
        text = build_system_instructions(Traits(), character)
        assert "speak like Captain" in text
        assert '- "Ahoy!"' in text

    def test_lists_tools(self) -> None:
        text = build_system_instructions(Traits())
        for tool in ("capture_frame", "get_location", "set_device_state", "end_conversation"):
            assert tool in text


class TestPersonalityManager:
    """Tests for PersonalityManager."""

    def _write_personality(self, dir_path: Path, filename: str, data: dict) -> None:
        (dir_path / filename).write_text(json.dumps(data))

    def test_get_personality_case_insensitive(self, tmp_path: Path) -> None:
        self._write_personality(tmp_path, "MyBot.json", {
            "name": "My Bot",
            "voices": {"gemini": "Puck"},
        })
        mgr = PersonalityManager(tmp_path)
        # Stored as lowercase of stem
        p = mgr.get_personality("MYBOT")
        assert p.name == "My Bot"
        assert p.voice_for("gemini") == "Puck"

    def test_get_unknown_personality_raises(self, tmp_path: Path) -> None:
        mgr = PersonalityManager(tmp_path)
        with pytest.raises(KeyError, match="not found"):
            mgr.get_personality("nonexistent")

    def test_skips_invalid_files(self, tmp_path: Path) -> None:
        self._write_personality(tmp_path, "good.json", {
            "name": "Good", "voices": {"gemini": "Achird"},
        })
        (tmp_path / "bad.json").write_text("not json{{{")
        self._write_personality(tmp_path, "novoice.json", {"name": "No Voice"})

        mgr = PersonalityManager(tmp_path)
        assert mgr.list_personalities() == ["good"]

    def test_nonexistent_directory(self, tmp_path: Path) -> None:
        mgr = PersonalityManager(tmp_path / "nonexistent")
        assert mgr.list_personalities() == []
        assert mgr.get_default().name == "Bobi"

    def test_loads_real_personalities(self) -> None:
        mgr = PersonalityManager(PERSONALITIES_DIR)
        assert mgr.list_personalities() == ["default", "pocket_cat", "stoic"]

        stoic = mgr.get_personality("stoic")
        assert stoic.voice_for("gemini") == "Kore"
        assert stoic.voice_for("openai") == "sage"
        assert stoic.vad_sensitivity == "LOW"

        cat = mgr.get_personality("pocket_cat")
        assert cat.character is not None
        assert "Pocket Cat" in cat.system_instructions

    def test_get_default(self) -> None:
        default = PersonalityManager(PERSONALITIES_DIR).get_default()
        assert default.name == "Bobi"
        assert default.voice_for("gemini") == "Achird"

    def test_personality_config_is_frozen(self, tmp_path: Path) -> None:
        self._write_personality(tmp_path, "test.json", {
            "name": "Test", "voices": {"gemini": "Achird"},
        })
        p = PersonalityManager(tmp_path).get_personality("test")
        with pytest.raises(AttributeError):
            p.name = "Changed"  # type: ignore[misc]
