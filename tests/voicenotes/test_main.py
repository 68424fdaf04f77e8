import asyncio
import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest

from voicenotes.app.config.logging_config import LoggingConfigModel, setup_logging
from voicenotes.app.config.voice_types import DictationResult, ListeningMode
from voicenotes.app.events.voice_events import AppCommandEvent, ListeningFinishedEvent, StatusUpdateEvent
from voicenotes.main import _parse_args, _print_event, main


def test_parse_args_defaults():
    args = _parse_args([])

    assert args.config is None
    assert args.hands_free is None
    assert args.dictate is False


def test_parse_args_flags():
    assert _parse_args(["--hands-free"]).hands_free is True
    assert _parse_args(["--no-hands-free"]).hands_free is False
    assert _parse_args(["--config", "custom.yaml", "--dictate"]).config == "custom.yaml"


def test_print_event_formats(capsys):
    _print_event(StatusUpdateEvent(status="ready", message="Voice commands ready"))
    _print_event(AppCommandEvent(action="ai_query", argument="groceries", transcript="search for groceries"))
    _print_event(
        ListeningFinishedEvent(
            mode=ListeningMode.DICTATION, result=DictationResult(transcript="buy milk", duration_ms=65_000)
        )
    )

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "[ready] Voice commands ready"
    assert lines[1] == "  app: ai_query: groceries"
    assert lines[2] == "  dictation finished after 1:05, no audio: 'buy milk'"


def test_disabled_logging_silences_root():
    setup_logging(LoggingConfigModel(enable_logs=False))

    assert logging.getLogger().level > logging.CRITICAL


@pytest.fixture
def cli_mocks(app_config):
    """Patch config, logging, signals and the controller so main() runs without audio hardware."""
    controller = Mock()
    controller.hands_free = False
    controller.initialize = AsyncMock(return_value=True)
    controller.set_hands_free = AsyncMock()
    controller.start_listening = AsyncMock()
    controller.shutdown = AsyncMock()
    preferences = Mock()
    preferences.shutdown = AsyncMock()

    with (
        patch("voicenotes.main.load_app_config", return_value=app_config),
        patch("voicenotes.main.setup_logging"),
        patch("voicenotes.main._setup_signal_handlers"),
        patch("voicenotes.main.PreferencesService", return_value=preferences),
        patch("voicenotes.main.build_controller", return_value=controller),
    ):
        yield controller, preferences


@pytest.mark.asyncio
async def test_main_hands_free_flag_applies_to_run_only(cli_mocks):
    controller, preferences = cli_mocks

    task = asyncio.create_task(main(["--hands-free"]))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    controller.set_hands_free.assert_awaited_once_with(True, persist=False)
    controller.shutdown.assert_awaited_once()
    preferences.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_shuts_down_preferences_when_speech_unavailable(cli_mocks):
    controller, preferences = cli_mocks
    controller.initialize.return_value = False

    assert await main([]) == 1

    controller.set_hands_free.assert_not_awaited()
    controller.shutdown.assert_awaited_once()
    preferences.shutdown.assert_awaited_once()
