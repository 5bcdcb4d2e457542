"""Command-line entry point for the Bobi companion runtime."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from bobi.bridge.server import BridgeServer
from bobi.core.config import Settings, load_settings
from bobi.core.events import OUTBOUND
from bobi.core.log_forwarding import EventBusLogHandler
from bobi.core.orchestrator import Orchestrator
from bobi.dvr.recorder import DVRRecorder
from bobi.hardware.stubs import StubAudioInput, StubCameraInput, StubFrameResponder
from bobi.wake_word.detector import WakeWordDetector

logger = logging.getLogger("bobi")


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(description="Run the Bobi in-car companion.")
    parser.add_argument("--env", type=Path, help="Path to a .env file.")
    parser.add_argument("--config", type=Path, help="Path to a YAML config file.")
    parser.add_argument(
        "--stub-camera",
        action="store_true",
        help="Answer frame requests with a placeholder JPEG instead of a UI camera.",
    )
    parser.add_argument(
        "--wake-word",
        action="store_true",
        help="Listen for the wake word on a silent stub microphone (for wiring tests).",
    )
    return parser.parse_args(argv)


async def run(settings: Settings, stub_camera: bool = False, wake_word: bool = False) -> None:
    """Run the orchestrator and the UI bridge until interrupted."""
    recorder = DVRRecorder(
        settings.dvr_dir,
        segment_duration_ms=settings.dvr_segment_duration_ms,
        max_segments=settings.dvr_max_segments,
    )
    wake_detector = None
    if wake_word or settings.wake_word_enabled:
        wake_detector = WakeWordDetector(
            StubAudioInput(),
            wake_word=settings.wake_word,
            sensitivity=settings.wake_word_sensitivity,
        )

    orchestrator = Orchestrator(settings, recorder=recorder, wake_detector=wake_detector)
    log_handler = EventBusLogHandler(orchestrator.bus)
    logging.getLogger().addHandler(log_handler)

    if stub_camera:
        responder = StubFrameResponder(StubCameraInput(), orchestrator.frame_captured)
        orchestrator.bus.subscribe(OUTBOUND, responder.on_outbound)

    bridge = BridgeServer(orchestrator, settings.bridge_host, settings.bridge_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass

    await bridge.start()
    await orchestrator.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down.")
        await orchestrator.stop()
        await bridge.stop()
        logging.getLogger().removeHandler(log_handler)


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Returns:
        Process exit code.
    """
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    try:
        settings = load_settings(env_path=args.env, yaml_path=args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    logger.info("Starting Bobi (provider=%s).", settings.llm_provider)

    try:
        asyncio.run(run(settings, stub_camera=args.stub_camera, wake_word=args.wake_word))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
