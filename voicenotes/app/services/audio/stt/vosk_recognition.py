import asyncio
import json
import logging
import os
import threading
import uuid
from concurrent.futures import Future
from typing import Optional

import sounddevice as sd
import vosk

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.config.voice_types import TranscriptSegment
from voicenotes.app.services.audio.errors import DeviceUnavailableError, RecognitionEngineError
from voicenotes.app.services.audio.interfaces import EndCallback, ErrorCallback, ResultCallback
from voicenotes.app.services.audio.recorder import map_portaudio_error

logger = logging.getLogger(__name__)


class VoskRecognitionSession:
    """Streaming Vosk recognition over a dedicated microphone stream.

    A reader thread feeds blocks to a KaldiRecognizer. Completed utterances are delivered
    as final segments and, when interim results are enabled, changed partial hypotheses
    as interim segments. Callbacks are marshalled onto the controller's loop.

    Attributes:
        session_id: Unique session identifier.
    """

    def __init__(
        self,
        service: "VoskRecognitionService",
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        self.session_id = str(uuid.uuid4())
        self._service = service
        self._continuous = continuous
        self._interim_results = interim_results
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end

        stt = service.config.stt
        self._sample_rate = stt.sample_rate
        self._block_size = int(stt.sample_rate * stt.block_duration_ms / 1000)
        self._device = service.config.audio.device

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._recognizer: Optional[vosk.KaldiRecognizer] = None
        self._stream: Optional[sd.RawInputStream] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._running = False
        self._ended = False
        self._last_partial = ""

    def _open(self) -> None:
        model = self._service.get_model()
        self._recognizer = vosk.KaldiRecognizer(model, self._sample_rate)
        try:
            self._stream = sd.RawInputStream(
                samplerate=self._sample_rate, blocksize=self._block_size, channels=1, dtype="int16", device=self._device
            )
            self._stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            self._close_stream()
            raise map_portaudio_error(e) from e

    async def start(self) -> None:
        """Load the model if needed, open the microphone and start recognizing.

        Raises:
            PermissionDeniedError: Microphone access refused.
            DeviceUnavailableError: No input device, or the model could not be loaded.
        """
        self._loop = asyncio.get_running_loop()
        await asyncio.to_thread(self._open)
        with self._lock:
            self._running = True
        self._thread = threading.Thread(target=self._recognition_thread, name=f"Vosk-{self.session_id[:8]}", daemon=True)
        self._thread.start()
        logger.debug(f"Vosk session {self.session_id} started (continuous={self._continuous}, interim={self._interim_results})")

    def _submit(self, coro) -> Optional[Future]:
        if self._loop is None or self._loop.is_closed():
            coro.close()
            return None
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def _recognition_thread(self) -> None:
        ended_by_itself = False
        try:
            while True:
                with self._lock:
                    if not self._running:
                        break
                try:
                    data, _ = self._stream.read(self._block_size)
                except (sd.PortAudioError, OSError, RuntimeError) as e:
                    logger.error(f"Audio device error during recognition: {e}")
                    self._submit(self._on_error(self, RecognitionEngineError("audio-capture", str(e))))
                    ended_by_itself = True
                    break

                if self._recognizer.AcceptWaveform(bytes(data)):
                    text = json.loads(self._recognizer.Result()).get("text", "")
                    self._last_partial = ""
                    if text:
                        self._submit(self._on_result(self, TranscriptSegment(text=text, is_final=True)))
                        if not self._continuous:
                            ended_by_itself = True
                            break
                elif self._interim_results:
                    partial = json.loads(self._recognizer.PartialResult()).get("partial", "")
                    if partial and partial != self._last_partial:
                        self._last_partial = partial
                        self._submit(self._on_result(self, TranscriptSegment(text=partial, is_final=False)))
        finally:
            self._close_stream()
            if ended_by_itself:
                with self._lock:
                    self._running = False
                self._finish_end()

    def _finish_end(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
        self._submit(self._on_end(self))

    def _close_stream(self) -> None:
        if self._stream is None:
            return
        try:
            if self._stream.active:
                self._stream.stop()
            self._stream.close()
        except (sd.PortAudioError, OSError) as e:
            logger.error(f"Error closing recognition stream: {e}", exc_info=True)
        finally:
            self._stream = None

    def _join(self) -> None:
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.error("Recognition thread did not terminate after 5s timeout")

    async def stop(self) -> None:
        """Stop reading, flush the last utterance as a final segment, then report the end."""
        with self._lock:
            self._running = False
        await asyncio.to_thread(self._join)

        if self._recognizer is not None:
            text = json.loads(self._recognizer.FinalResult()).get("text", "")
            self._recognizer = None
            if text:
                await self._on_result(self, TranscriptSegment(text=text, is_final=True))

        with self._lock:
            if self._ended:
                return
            self._ended = True
        await self._on_end(self)
        logger.debug(f"Vosk session {self.session_id} stopped")


class VoskRecognitionService:
    """RecognitionService backed by an offline Vosk model shared across sessions."""

    def __init__(self, config: GlobalAppConfig) -> None:
        self.config = config
        self._model: Optional[vosk.Model] = None
        self._model_lock = threading.Lock()

    def is_available(self) -> bool:
        model_path = self.config.stt.vosk_model_path
        if model_path and not os.path.isdir(model_path):
            logger.warning(f"Vosk model directory not found: {model_path}")
            return False
        try:
            return len(sd.query_devices()) > 0
        except sd.PortAudioError as e:
            logger.warning(f"No audio devices available: {e}")
            return False

    def get_model(self) -> vosk.Model:
        with self._model_lock:
            if self._model is None:
                stt = self.config.stt
                try:
                    if stt.vosk_model_path:
                        self._model = vosk.Model(stt.vosk_model_path)
                    else:
                        self._model = vosk.Model(lang=stt.vosk_model_lang)
                except Exception as e:
                    raise DeviceUnavailableError(f"Speech model could not be loaded: {e}", code="model-unavailable") from e
                logger.info(f"Vosk model loaded ({stt.vosk_model_path or stt.vosk_model_lang})")
            return self._model

    def create_session(
        self,
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> VoskRecognitionSession:
        return VoskRecognitionSession(self, continuous, interim_results, on_result, on_error, on_end)
