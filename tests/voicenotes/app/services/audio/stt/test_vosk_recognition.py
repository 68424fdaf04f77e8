import asyncio
import json
import time
from unittest.mock import Mock, patch

import pytest
import sounddevice as sd

from voicenotes.app.services.audio.errors import DeviceUnavailableError
from voicenotes.app.services.audio.stt.vosk_recognition import VoskRecognitionService

MODULE = "voicenotes.app.services.audio.stt.vosk_recognition"


class Callbacks:
    def __init__(self):
        self.results = []
        self.errors = []
        self.ended = 0

    async def on_result(self, session, segment):
        self.results.append(segment)

    async def on_error(self, session, error):
        self.errors.append(error)

    async def on_end(self, session):
        self.ended += 1


@pytest.fixture
def callbacks():
    return Callbacks()


@pytest.fixture
def mock_stream():
    stream = Mock()

    def read(frames):
        time.sleep(0.005)
        return b"\x00" * (frames * 2), False

    stream.read.side_effect = read
    stream.active = True
    return stream


@pytest.fixture
def mock_vosk():
    recognizer = Mock()
    calls = {"count": 0}

    def accept(data):
        calls["count"] += 1
        return calls["count"] == 3

    recognizer.AcceptWaveform.side_effect = accept
    recognizer.Result.return_value = json.dumps({"text": "hello world"})
    recognizer.PartialResult.side_effect = lambda: json.dumps({"partial": "hello" if calls["count"] < 3 else ""})
    recognizer.FinalResult.return_value = json.dumps({"text": "and goodbye"})

    with patch(f"{MODULE}.vosk") as vosk_module:
        vosk_module.KaldiRecognizer.return_value = recognizer
        yield vosk_module


@pytest.mark.asyncio
async def test_session_delivers_interim_final_and_end(app_config, callbacks, mock_stream, mock_vosk):
    with patch(f"{MODULE}.sd.RawInputStream", return_value=mock_stream):
        service = VoskRecognitionService(app_config)
        session = service.create_session(True, True, callbacks.on_result, callbacks.on_error, callbacks.on_end)
        await session.start()
        await asyncio.sleep(0.1)
        await session.stop()
        await asyncio.sleep(0.01)

    interim = [segment.text for segment in callbacks.results if not segment.is_final]
    finals = [segment.text for segment in callbacks.results if segment.is_final]

    assert interim == ["hello"]
    assert finals == ["hello world", "and goodbye"]
    assert callbacks.ended == 1
    assert callbacks.errors == []


@pytest.mark.asyncio
async def test_interim_results_can_be_disabled(app_config, callbacks, mock_stream, mock_vosk):
    with patch(f"{MODULE}.sd.RawInputStream", return_value=mock_stream):
        session = VoskRecognitionService(app_config).create_session(
            True, False, callbacks.on_result, callbacks.on_error, callbacks.on_end
        )
        await session.start()
        await asyncio.sleep(0.05)
        await session.stop()

    assert all(segment.is_final for segment in callbacks.results)


@pytest.mark.asyncio
async def test_device_error_reports_and_ends(app_config, callbacks, mock_stream, mock_vosk):
    mock_stream.read.side_effect = sd.PortAudioError("device unplugged")

    with patch(f"{MODULE}.sd.RawInputStream", return_value=mock_stream):
        session = VoskRecognitionService(app_config).create_session(
            True, True, callbacks.on_result, callbacks.on_error, callbacks.on_end
        )
        await session.start()
        await asyncio.sleep(0.05)
        await session.stop()
        await asyncio.sleep(0.01)

    assert [error.code for error in callbacks.errors] == ["audio-capture"]
    assert callbacks.ended == 1


def test_model_load_failure_is_device_error(app_config, mock_vosk):
    mock_vosk.Model.side_effect = RuntimeError("no model")

    with pytest.raises(DeviceUnavailableError):
        VoskRecognitionService(app_config).get_model()


def test_model_is_loaded_once(app_config, mock_vosk):
    service = VoskRecognitionService(app_config)

    assert service.get_model() is service.get_model()
    mock_vosk.Model.assert_called_once_with(lang="en-us")


def test_availability(app_config, tmp_path):
    with patch(f"{MODULE}.sd.query_devices", return_value=[{"name": "mic"}]):
        assert VoskRecognitionService(app_config).is_available()

        app_config.stt.vosk_model_path = str(tmp_path / "missing-model")
        assert not VoskRecognitionService(app_config).is_available()
