import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from voicenotes.app.config.app_config import GlobalAppConfig, load_app_config
from voicenotes.app.config.logging_config import setup_logging
from voicenotes.app.config.voice_types import ListeningMode
from voicenotes.app.event_bus import EventBus
from voicenotes.app.events.base_event import BaseEvent
from voicenotes.app.events.voice_events import (
    AppCommandEvent,
    CommandExecuteEvent,
    DictationFinalizedEvent,
    DictationUpdateEvent,
    ListeningFinishedEvent,
    StatusUpdateEvent,
    VoiceErrorEvent,
)
from voicenotes.app.services.audio.recorder import SoundDeviceCaptureService
from voicenotes.app.services.audio.stt.vosk_recognition import VoskRecognitionService
from voicenotes.app.services.storage.preferences_service import PreferencesService
from voicenotes.app.services.voice.mode_controller import ModeController
from voicenotes.app.utils.audio_utils import format_duration
from voicenotes.app.utils.event_utils import EventSubscriptionManager

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Voice control for notes: wake phrase, commands and dictation")
    parser.add_argument("--config", help="Path to a settings.yaml file")
    hands_free = parser.add_mutually_exclusive_group()
    hands_free.add_argument(
        "--hands-free",
        dest="hands_free",
        action="store_true",
        default=None,
        help="Enable hands-free mode for this run; the saved preference is unchanged",
    )
    hands_free.add_argument(
        "--no-hands-free", dest="hands_free", action="store_false", help="Disable hands-free mode for this run"
    )
    parser.add_argument("--dictate", action="store_true", help="Start a dictation session immediately")
    return parser.parse_args(argv)


def _print_event(event: BaseEvent) -> None:
    """Console view of outbound events."""
    if isinstance(event, StatusUpdateEvent):
        print(f"[{event.status}] {event.message}")
    elif isinstance(event, DictationUpdateEvent):
        print(f"  ... {event.transcript}")
    elif isinstance(event, DictationFinalizedEvent):
        print(f"  > {event.transcript}")
    elif isinstance(event, CommandExecuteEvent):
        value = f" {event.command.value}" if event.command.value else ""
        argument = f" ({event.argument})" if event.argument else ""
        print(f"  editor: {event.command.method}{value}{argument}")
    elif isinstance(event, AppCommandEvent):
        argument = f": {event.argument}" if event.argument else ""
        print(f"  app: {event.action}{argument}")
    elif isinstance(event, ListeningFinishedEvent) and event.result is not None:
        audio = f", {len(event.result.audio)} bytes audio" if event.result.audio else ", no audio"
        print(f"  dictation finished after {format_duration(event.result.duration_ms)}{audio}: {event.result.transcript!r}")
    elif isinstance(event, VoiceErrorEvent):
        print(f"  error ({event.kind}): {event.message}")


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Request shutdown on SIGINT and SIGTERM."""
    loop = asyncio.get_running_loop()

    def request_shutdown(signum: int) -> None:
        logger.info(f"Received signal {signum}")
        stop_event.set()

    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except NotImplementedError:
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(request_shutdown, signum))


def build_controller(
    app_config: GlobalAppConfig, event_bus: EventBus, preferences: Optional[PreferencesService] = None
) -> ModeController:
    """Wire the platform adapters and preferences into a ModeController."""
    return ModeController(
        event_bus=event_bus,
        config=app_config,
        recognition_service=VoskRecognitionService(app_config),
        capture_service=SoundDeviceCaptureService(app_config),
        preferences=preferences,
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """Run the voice controller until interrupted."""
    args = _parse_args(argv)
    app_config = load_app_config(args.config)
    setup_logging(config=app_config.logging)

    event_bus = EventBus()
    await event_bus.start_worker()
    console = EventSubscriptionManager(event_bus, "Console")
    for event_type in (
        StatusUpdateEvent,
        DictationUpdateEvent,
        DictationFinalizedEvent,
        CommandExecuteEvent,
        AppCommandEvent,
        ListeningFinishedEvent,
        VoiceErrorEvent,
    ):
        console.subscribe(event_type, _print_event)

    preferences = PreferencesService(app_config)
    controller = build_controller(app_config, event_bus, preferences)
    stop_event = asyncio.Event()
    _setup_signal_handlers(stop_event)

    try:
        if not await controller.initialize():
            return 1

        if args.hands_free is not None and args.hands_free != controller.hands_free:
            await controller.set_hands_free(args.hands_free, persist=False)
        if args.dictate:
            await controller.start_listening(ListeningMode.DICTATION)
        elif not controller.hands_free:
            await controller.start_listening(ListeningMode.AMBIENT)

        await stop_event.wait()
        return 0
    finally:
        logger.info("Shutting down")
        await controller.shutdown()
        await preferences.shutdown()
        console.unsubscribe_all()
        await event_bus.stop_worker()


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
