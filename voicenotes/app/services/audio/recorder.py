import asyncio
import logging
import threading
import uuid
from typing import List, Optional

import numpy as np
import sounddevice as sd

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.config.voice_types import CapturedAudio
from voicenotes.app.services.audio.errors import DeviceUnavailableError, PermissionDeniedError, VoiceServiceError
from voicenotes.app.utils.audio_utils import concatenate_chunks, encode_wav, frames_duration_ms

logger = logging.getLogger(__name__)


def map_portaudio_error(error: Exception) -> VoiceServiceError:
    """Translate a PortAudio failure into the service error taxonomy."""
    message = str(error)
    lowered = message.lower()
    if "permission" in lowered or "denied" in lowered or "not allowed" in lowered:
        return PermissionDeniedError(f"Microphone access denied: {message}")
    return DeviceUnavailableError(f"Audio input device unavailable: {message}")


class SoundDeviceCaptureSession:
    """Records one dictation's audio on a background thread.

    Frames are read in fixed blocks (chunk_duration_ms) and kept in memory until stop(),
    which joins the thread and returns the recording encoded as WAV.

    Attributes:
        session_id: Unique session identifier.
        chunk_size: Frames per read.
    """

    def __init__(self, config: GlobalAppConfig) -> None:
        audio = config.audio
        self.session_id = str(uuid.uuid4())
        self.sample_rate = audio.sample_rate
        self.channels = audio.channels
        self.dtype = audio.dtype
        self.device = audio.device
        self.mime_type = audio.mime_type
        self.chunk_size = int(self.sample_rate * audio.chunk_duration_ms / 1000)

        self._chunks: List[np.ndarray] = []
        self._is_recording = False
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stream: Optional[sd.InputStream] = None

    def _open_stream(self) -> None:
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.chunk_size,
                channels=self.channels,
                dtype=self.dtype,
                device=self.device,
            )
            self._stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            self._cleanup_stream()
            raise map_portaudio_error(e) from e

    async def start(self) -> None:
        """Open the input stream and start the reader thread.

        Raises:
            PermissionDeniedError: Microphone access refused.
            DeviceUnavailableError: No usable input device.
        """
        await asyncio.to_thread(self._open_stream)
        with self._lock:
            self._is_recording = True
        self._thread = threading.Thread(target=self._recording_thread, name=f"Capture-{self.session_id[:8]}", daemon=True)
        self._thread.start()
        logger.debug(f"Capture session {self.session_id} started: {self.sample_rate}Hz, {self.chunk_size} frames/block")

    def _recording_thread(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._is_recording:
                        break
                try:
                    data, overflowed = self._stream.read(self.chunk_size)
                except (sd.PortAudioError, OSError, RuntimeError) as e:
                    logger.error(f"Audio device error during capture: {e}")
                    return
                if overflowed:
                    logger.debug("Capture input overflow")
                with self._lock:
                    self._chunks.append(data.copy())
        finally:
            self._cleanup_stream()

    def _cleanup_stream(self) -> None:
        if self._stream is None:
            return
        try:
            if self._stream.active:
                self._stream.stop()
            self._stream.close()
        except (sd.PortAudioError, OSError) as e:
            logger.error(f"Error cleaning up capture stream: {e}", exc_info=True)
        finally:
            self._stream = None

    def _join(self) -> None:
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.error("Capture thread did not terminate after 5s timeout")

    async def stop(self) -> Optional[CapturedAudio]:
        """Stop recording and return the buffered audio, None if nothing was captured."""
        with self._lock:
            was_recording = self._is_recording
            self._is_recording = False
        if was_recording:
            await asyncio.to_thread(self._join)

        with self._lock:
            chunks, self._chunks = self._chunks, []

        frames = concatenate_chunks(chunks, channels=self.channels, dtype=self.dtype)
        if len(frames) == 0:
            logger.debug(f"Capture session {self.session_id} stopped with no audio")
            return None

        data = await asyncio.to_thread(encode_wav, frames, self.sample_rate)
        duration_ms = frames_duration_ms(len(frames), self.sample_rate)
        logger.debug(f"Capture session {self.session_id} stopped: {duration_ms}ms, {len(data)} bytes")
        return CapturedAudio(data=data, mime_type=self.mime_type, duration_ms=duration_ms)


class SoundDeviceCaptureService:
    """CaptureService backed by sounddevice."""

    def __init__(self, config: GlobalAppConfig) -> None:
        self.config = config

    def create_session(self) -> SoundDeviceCaptureSession:
        return SoundDeviceCaptureSession(self.config)
