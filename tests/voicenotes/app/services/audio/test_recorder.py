import asyncio
import time
from unittest.mock import Mock, patch

import numpy as np
import pytest
import sounddevice as sd

from voicenotes.app.services.audio.errors import DeviceUnavailableError, PermissionDeniedError
from voicenotes.app.services.audio.recorder import SoundDeviceCaptureService, map_portaudio_error


@pytest.fixture
def mock_stream():
    stream = Mock()
    block = np.full((800, 1), 120, dtype=np.int16)

    def read(frames):
        time.sleep(0.005)
        return block, False

    stream.read.side_effect = read
    stream.active = True
    return stream


def test_chunk_size_follows_config(app_config):
    session = SoundDeviceCaptureService(app_config).create_session()

    assert session.chunk_size == 800
    assert session.sample_rate == 16000


@pytest.mark.asyncio
async def test_capture_returns_wav_audio(app_config, mock_stream):
    with patch("voicenotes.app.services.audio.recorder.sd.InputStream", return_value=mock_stream):
        session = SoundDeviceCaptureService(app_config).create_session()
        await session.start()
        await asyncio.sleep(0.05)
        audio = await session.stop()

    assert audio is not None
    assert audio.mime_type == "audio/wav"
    assert audio.data[:4] == b"RIFF"
    assert audio.duration_ms > 0
    mock_stream.start.assert_called_once()
    mock_stream.close.assert_called_once()


@pytest.mark.asyncio
async def test_stop_without_start_returns_none(app_config):
    session = SoundDeviceCaptureService(app_config).create_session()

    assert await session.stop() is None


@pytest.mark.asyncio
async def test_open_failure_maps_to_permission_error(app_config):
    error = sd.PortAudioError("Error opening InputStream: Permission denied")
    with patch("voicenotes.app.services.audio.recorder.sd.InputStream", side_effect=error):
        session = SoundDeviceCaptureService(app_config).create_session()

        with pytest.raises(PermissionDeniedError):
            await session.start()


@pytest.mark.asyncio
async def test_open_failure_maps_to_device_error(app_config):
    error = sd.PortAudioError("Invalid number of channels")
    with patch("voicenotes.app.services.audio.recorder.sd.InputStream", side_effect=error):
        session = SoundDeviceCaptureService(app_config).create_session()

        with pytest.raises(DeviceUnavailableError):
            await session.start()


def test_map_portaudio_error():
    assert isinstance(map_portaudio_error(OSError("access denied by system")), PermissionDeniedError)
    assert isinstance(map_portaudio_error(OSError("no default input device")), DeviceUnavailableError)
