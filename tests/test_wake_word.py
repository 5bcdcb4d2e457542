"""Tests for wake word detection and manual triggers."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from bobi.hardware.stubs import StubAudioInput
from bobi.wake_word.detector import WakeWordDetector


def _mock_model(score: float) -> MagicMock:
    model = MagicMock()
    model.predict.return_value = {"hey_jarvis": score}
    return model


class TestWakeWordDetector:
    async def test_start_and_stop(self) -> None:
        audio_in = StubAudioInput()

        with patch("bobi.wake_word.detector.OWWModel", return_value=_mock_model(0.0)):
            detector = WakeWordDetector(audio_in, wake_word="hey_jarvis", sensitivity=0.5)
            await detector.start(AsyncMock())
            assert detector.is_listening
            assert audio_in.is_open()

            await asyncio.sleep(0.1)

            detector.stop()
            assert not detector.is_listening
            assert not audio_in.is_open()

    async def test_fires_callback_on_detection(self) -> None:
        model = _mock_model(0.8)
        with patch("bobi.wake_word.detector.OWWModel", return_value=model):
            detector = WakeWordDetector(StubAudioInput(), sensitivity=0.5)
            callback = AsyncMock()

            await detector.start(callback)
            await asyncio.sleep(0.2)
            detector.stop()

            assert callback.call_count >= 1
            model.reset.assert_called()

    async def test_no_callback_below_sensitivity(self) -> None:
        with patch("bobi.wake_word.detector.OWWModel", return_value=_mock_model(0.3)):
            detector = WakeWordDetector(StubAudioInput(), sensitivity=0.5)
            callback = AsyncMock()

            await detector.start(callback)
            await asyncio.sleep(0.2)
            detector.stop()

            callback.assert_not_called()

    async def test_pause_prevents_detection(self) -> None:
        with patch("bobi.wake_word.detector.OWWModel", return_value=_mock_model(0.9)):
            detector = WakeWordDetector(StubAudioInput(), sensitivity=0.5)
            callback = AsyncMock()

            await detector.start(callback)
            detector.pause()
            assert not detector.is_listening

            callback.reset_mock()
            await asyncio.sleep(0.15)
            callback.assert_not_called()

            detector.resume()
            assert detector.is_listening
            await asyncio.sleep(0.2)
            detector.stop()
            assert callback.call_count >= 1

    async def test_start_twice_is_noop(self) -> None:
        with patch("bobi.wake_word.detector.OWWModel", return_value=_mock_model(0.0)) as oww:
            detector = WakeWordDetector(StubAudioInput())
            await detector.start(AsyncMock())
            await detector.start(AsyncMock())
            detector.stop()
            assert oww.call_count == 1


class TestManualTrigger:
    async def test_manual_only_mode_loads_no_model(self) -> None:
        with patch("bobi.wake_word.detector.OWWModel") as oww:
            detector = WakeWordDetector(None)
            await detector.start(AsyncMock())
            assert detector.is_listening
            oww.assert_not_called()
            detector.stop()

    async def test_trigger_fires_callback(self) -> None:
        detector = WakeWordDetector(None)
        callback = AsyncMock()
        await detector.start(callback)
        assert await detector.trigger() is True
        callback.assert_awaited_once()

    async def test_trigger_before_start(self) -> None:
        detector = WakeWordDetector(None)
        assert await detector.trigger() is False

    async def test_trigger_after_stop(self) -> None:
        detector = WakeWordDetector(None)
        callback = AsyncMock()
        await detector.start(callback)
        detector.stop()
        assert await detector.trigger() is False
        callback.assert_not_called()
