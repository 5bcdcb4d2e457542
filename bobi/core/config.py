"""Configuration loader for the Bobi companion.

Loads settings from environment variables (.env file) and config/default.yaml,
with environment variables taking precedence over YAML defaults.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Project root is two levels up from this file (bobi/core/config.py -> project root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_VALID_PROVIDERS = {"gemini", "openai"}


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for the Bobi companion.

    All durations are in milliseconds.
    """

    # LLM
    llm_provider: str = "gemini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash-preview-native-audio-dialog"
    openai_api_key: str = ""
    openai_model: str = "gpt-realtime-mini"
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    openai_beta_protocol: bool = False

    # Wake word
    wake_word_enabled: bool = False
    wake_word: str = "hey_jarvis"
    wake_word_sensitivity: float = 0.5

    # Personality
    default_personality: str = "default"
    personalities_dir: str = str(PROJECT_ROOT / "config" / "personalities")

    # Session timing
    awake_window_ms: int = 20000
    max_dialog_duration_ms: int = 180000
    dialog_wrapup_grace_ms: int = 5000
    farewell_grace_ms: int = 5000
    greeting_delay_ms: int = 500
    frame_request_timeout_ms: int = 5000

    # Rate limiting
    capture_cooldown_ms: int = 800
    capture_max_per_window: int = 3
    capture_window_ms: int = 10000
    location_cache_ms: int = 1000
    volume_brightness_cooldown_ms: int = 300
    volume_brightness_max_delta: int = 15

    # Local feedback
    imu_flash_revert_ms: int = 2000
    gimbal_revert_ms: int = 1500

    # DVR
    dvr_segment_duration_ms: int = 60000
    dvr_max_segments: int = 60
    dvr_dir: str = str(PROJECT_ROOT / "dvr")

    # UI bridge
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 3001

    # Logging
    log_level: str = "INFO"

    @property
    def llm_api_key(self) -> str:
        """API key of the configured provider."""
        return self.gemini_api_key if self.llm_provider == "gemini" else self.openai_api_key


_DEFAULTS = Settings()


def _load_yaml_defaults(yaml_path: Path) -> dict[str, Any]:
    """Load default values from a YAML config file.

    Returns:
        Dictionary of configuration values. Empty dict if file not found.
    """
    if not yaml_path.exists():
        return {}
    with open(yaml_path) as f:
        data = yaml.safe_load(f)
    return data if data else {}


def _get(env_key: str, yaml_defaults: dict[str, Any], yaml_key: str, default: Any = None) -> Any:
    """Get a config value with precedence: env var > yaml default > hardcoded default.

    Args:
        env_key: Environment variable name.
        yaml_defaults: Dictionary from YAML config file.
        yaml_key: Dot-separated key path in YAML (e.g., "timing.awake_window_ms").
        default: Fallback default value.
    """
    env_val = os.environ.get(env_key)
    if env_val is not None and env_val != "":
        return env_val

    node = yaml_defaults
    for part in yaml_key.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return default
    return node if node is not None else default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def load_settings(
    env_path: Path | None = None,
    yaml_path: Path | None = None,
) -> Settings:
    """Load settings from .env and config/default.yaml.

    Environment variables take precedence over YAML defaults. A missing API
    key only produces a warning: the device still boots into passive
    recording and the failure surfaces when a session is opened.

    Args:
        env_path: Path to .env file. Defaults to PROJECT_ROOT/.env.
        yaml_path: Path to YAML config. Defaults to PROJECT_ROOT/config/default.yaml.

    Raises:
        ValueError: If the LLM provider is not one of "gemini" or "openai".
    """
    if env_path is None:
        env_path = PROJECT_ROOT / ".env"
    if yaml_path is None:
        yaml_path = PROJECT_ROOT / "config" / "default.yaml"

    load_dotenv(env_path, override=False)
    y = _load_yaml_defaults(yaml_path)
    d = _DEFAULTS

    provider = str(_get("LLM_PROVIDER", y, "llm.provider", d.llm_provider)).lower()
    if provider not in _VALID_PROVIDERS:
        raise ValueError(
            f"Unknown LLM provider '{provider}'. Must be one of: {sorted(_VALID_PROVIDERS)}"
        )

    settings = Settings(
        llm_provider=provider,
        gemini_api_key=str(_get("GEMINI_API_KEY", y, "gemini.api_key", d.gemini_api_key)),
        gemini_model=str(_get("GEMINI_MODEL", y, "gemini.model", d.gemini_model)),
        openai_api_key=str(_get("OPENAI_API_KEY", y, "openai.api_key", d.openai_api_key)),
        openai_model=str(_get("OPENAI_REALTIME_MODEL", y, "openai.model", d.openai_model)),
        openai_realtime_url=str(
            _get("OPENAI_REALTIME_URL", y, "openai.url", d.openai_realtime_url)
        ),
        openai_beta_protocol=_as_bool(
            _get("OPENAI_BETA_PROTOCOL", y, "openai.beta_protocol", d.openai_beta_protocol)
        ),
        wake_word_enabled=_as_bool(
            _get("WAKE_WORD_ENABLED", y, "wake_word.enabled", d.wake_word_enabled)
        ),
        wake_word=str(_get("WAKE_WORD", y, "wake_word.phrase", d.wake_word)),
        wake_word_sensitivity=float(
            _get("WAKE_WORD_SENSITIVITY", y, "wake_word.sensitivity", d.wake_word_sensitivity)
        ),
        default_personality=str(
            _get("DEFAULT_PERSONALITY", y, "personality.default", d.default_personality)
        ),
        personalities_dir=str(
            _get("PERSONALITIES_DIR", y, "personality.dir", d.personalities_dir)
        ),
        awake_window_ms=int(_get("AWAKE_WINDOW_MS", y, "timing.awake_window_ms", d.awake_window_ms)),
        max_dialog_duration_ms=int(
            _get("MAX_DIALOG_DURATION_MS", y, "timing.max_dialog_duration_ms",
                 d.max_dialog_duration_ms)
        ),
        dialog_wrapup_grace_ms=int(
            _get("DIALOG_WRAPUP_GRACE_MS", y, "timing.dialog_wrapup_grace_ms",
                 d.dialog_wrapup_grace_ms)
        ),
        farewell_grace_ms=int(
            _get("FAREWELL_GRACE_MS", y, "timing.farewell_grace_ms", d.farewell_grace_ms)
        ),
        greeting_delay_ms=int(
            _get("GREETING_DELAY_MS", y, "timing.greeting_delay_ms", d.greeting_delay_ms)
        ),
        frame_request_timeout_ms=int(
            _get("FRAME_REQUEST_TIMEOUT_MS", y, "timing.frame_request_timeout_ms",
                 d.frame_request_timeout_ms)
        ),
        capture_cooldown_ms=int(
            _get("CAPTURE_COOLDOWN_MS", y, "rate_limits.capture_cooldown_ms",
                 d.capture_cooldown_ms)
        ),
        capture_max_per_window=int(
            _get("CAPTURE_MAX_PER_WINDOW", y, "rate_limits.capture_max_per_window",
                 d.capture_max_per_window)
        ),
        capture_window_ms=int(
            _get("CAPTURE_WINDOW_MS", y, "rate_limits.capture_window_ms", d.capture_window_ms)
        ),
        location_cache_ms=int(
            _get("LOCATION_CACHE_MS", y, "rate_limits.location_cache_ms", d.location_cache_ms)
        ),
        volume_brightness_cooldown_ms=int(
            _get("VOLUME_BRIGHTNESS_COOLDOWN_MS", y,
                 "rate_limits.volume_brightness_cooldown_ms",
                 d.volume_brightness_cooldown_ms)
        ),
        volume_brightness_max_delta=int(
            _get("VOLUME_BRIGHTNESS_MAX_DELTA", y,
                 "rate_limits.volume_brightness_max_delta",
                 d.volume_brightness_max_delta)
        ),
        imu_flash_revert_ms=int(
            _get("IMU_FLASH_REVERT_MS", y, "feedback.imu_flash_revert_ms",
                 d.imu_flash_revert_ms)
        ),
        gimbal_revert_ms=int(
            _get("GIMBAL_REVERT_MS", y, "feedback.gimbal_revert_ms", d.gimbal_revert_ms)
        ),
        dvr_segment_duration_ms=int(
            _get("DVR_SEGMENT_DURATION_MS", y, "dvr.segment_duration_ms",
                 d.dvr_segment_duration_ms)
        ),
        dvr_max_segments=int(
            _get("DVR_MAX_SEGMENTS", y, "dvr.max_segments", d.dvr_max_segments)
        ),
        dvr_dir=str(_get("DVR_DIR", y, "dvr.dir", d.dvr_dir)),
        bridge_host=str(_get("BRIDGE_HOST", y, "bridge.host", d.bridge_host)),
        bridge_port=int(_get("BRIDGE_PORT", y, "bridge.port", d.bridge_port)),
        log_level=str(_get("LOG_LEVEL", y, "logging.level", d.log_level)),
    )

    if not settings.llm_api_key:
        logger.warning(
            "No API key configured for provider '%s'. Conversations will fail "
            "to connect until one is set.",
            settings.llm_provider,
        )
    return settings
