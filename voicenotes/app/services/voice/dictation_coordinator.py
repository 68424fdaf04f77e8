import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.config.voice_types import CapturedAudio, DictationResult, ListeningMode
from voicenotes.app.event_bus import EventBus
from voicenotes.app.events.voice_events import DictationFinalizedEvent, ListeningFinishedEvent, VoiceErrorEvent
from voicenotes.app.services.audio.errors import VoiceServiceError
from voicenotes.app.services.audio.interfaces import CaptureService, CaptureSession, RecognitionSession
from voicenotes.app.services.voice.timers import SingleShotTimer
from voicenotes.app.utils.audio_utils import to_data_url

logger = logging.getLogger(__name__)


class DictationState(Enum):
    """Lifecycle of the coordinator.

    IDLE: No session.
    RECORDING: Recognition (and capture, when available) running.
    FINALIZING: Streams are being stopped and the result assembled.
    """

    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


_VALID_TRANSITIONS = {
    DictationState.IDLE: {DictationState.RECORDING},
    DictationState.RECORDING: {DictationState.FINALIZING},
    DictationState.FINALIZING: {DictationState.IDLE},
}


@dataclass
class DictationSession:
    """State of one dictation session.

    Attributes:
        session_id: Unique session identifier.
        recognition: Recognition stream paired with this session.
        start_time: Clock reading at session start (seconds).
        capture: Capture stream, None when capture could not be acquired.
        segments: Finalized dictation text, in order.
        capture_failed: Capture acquisition failed and the session is transcript-only.
    """

    session_id: str
    recognition: RecognitionSession
    start_time: float
    capture: Optional[CaptureSession] = None
    segments: List[str] = field(default_factory=list)
    capture_failed: bool = False

    @property
    def transcript(self) -> str:
        return " ".join(segment for segment in self.segments if segment)


class DictationCoordinator:
    """Runs one recognition stream and one capture stream in lockstep for a dictation session.

    Recognition is started by the mode controller and handed over through begin(), which
    then acquires capture. A capture failure only degrades the session to transcript-only.
    Smart Stop is armed at begin() and re-armed on every finalized segment; when it fires
    the controller is asked to finish the session through on_smart_stop.

    finish() stops recognition and waits for it, then stops capture and collects its
    buffered audio, then publishes exactly one ListeningFinishedEvent with the result.

    Attributes:
        _state: Current DictationState.
        _session: Active session or None.
        _smart_stop: Silence timer for the active session.
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: GlobalAppConfig,
        capture_service: Optional[CaptureService] = None,
        on_smart_stop: Optional[Callable[[str], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            event_bus: EventBus for dictation and listening events.
            config: Global configuration (dictation and audio sections are used).
            capture_service: Audio capture factory; None makes every session transcript-only.
            on_smart_stop: Awaited with the session id when Smart Stop fires.
            clock: Seconds clock for durations, time.monotonic by default.
        """
        self.event_bus = event_bus
        self.config = config
        self._capture_service = capture_service
        self._on_smart_stop = on_smart_stop
        self._clock = clock or time.monotonic

        self._state_lock = asyncio.Lock()
        self._state = DictationState.IDLE
        self._session: Optional[DictationSession] = None
        self._smart_stop = SingleShotTimer("smart_stop", self._handle_smart_stop)

    @property
    def state(self) -> DictationState:
        return self._state

    @property
    def session(self) -> Optional[DictationSession]:
        return self._session

    def owns(self, recognition: RecognitionSession) -> bool:
        return self._session is not None and self._session.recognition is recognition

    def is_finalizing(self, recognition: RecognitionSession) -> bool:
        return self._state == DictationState.FINALIZING and self.owns(recognition)

    def _set_state(self, new_state: DictationState) -> None:
        old_state = self._state
        if new_state not in _VALID_TRANSITIONS[old_state]:
            error_msg = f"Invalid state transition: {old_state.value} -> {new_state.value}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        self._state = new_state
        logger.debug(f"State transition: {old_state.value} -> {new_state.value}")

    async def begin(self, recognition: RecognitionSession) -> DictationSession:
        """Start a session around an already running recognition stream.

        Args:
            recognition: Started recognition stream for this session.

        Returns:
            The new DictationSession.

        Raises:
            ValueError: A session is already active.
        """
        async with self._state_lock:
            self._set_state(DictationState.RECORDING)
            session = DictationSession(session_id=str(uuid.uuid4()), recognition=recognition, start_time=self._clock())
            self._session = session

        await self._acquire_capture(session)
        self._arm_smart_stop()
        logger.info(f"Dictation session {session.session_id} started (audio={'on' if session.capture else 'off'})")
        return session

    async def _acquire_capture(self, session: DictationSession) -> None:
        if self._capture_service is None:
            session.capture_failed = True
            logger.warning("No capture service configured - dictation will be transcript-only")
            return

        capture = self._capture_service.create_session()
        try:
            await capture.start()
        except VoiceServiceError as e:
            session.capture_failed = True
            logger.warning(f"Audio capture unavailable, continuing transcript-only: {e.message}")
            await self.event_bus.publish(
                VoiceErrorEvent(message="Audio recording unavailable", kind="capture", fatal=False, details={"error": e.message})
            )
            return
        except Exception as e:
            session.capture_failed = True
            logger.error(f"Unexpected error starting audio capture: {e}", exc_info=True)
            await self.event_bus.publish(
                VoiceErrorEvent(message="Audio recording unavailable", kind="capture", fatal=False, details={"error": str(e)})
            )
            return

        session.capture = capture

    def _arm_smart_stop(self) -> None:
        if not self.config.dictation.smart_stop_enabled or self._state != DictationState.RECORDING:
            return
        self._smart_stop.start(self.config.dictation.smart_stop_silence_seconds)

    def note_activity(self) -> None:
        """Re-arm Smart Stop after a finalized segment, dictation text or command."""
        self._arm_smart_stop()

    async def _handle_smart_stop(self) -> None:
        session = self._session
        if session is None or self._state != DictationState.RECORDING:
            return

        logger.info(f"Smart Stop: no finalized speech for {self.config.dictation.smart_stop_silence_seconds}s")
        if self._on_smart_stop is not None:
            await self._on_smart_stop(session.session_id)

    async def add_segment(self, text: str) -> None:
        """Append a finalized dictation segment and publish it."""
        text = text.strip()
        session = self._session
        if not text or session is None:
            return

        session.segments.append(text)
        await self.event_bus.publish(DictationFinalizedEvent(transcript=text))

    async def finish(self, reason: str = "stopped") -> Optional[DictationResult]:
        """Stop both streams in order and publish the result.

        Safe to call when no session is recording; returns None in that case.

        Args:
            reason: Reported in ListeningFinishedEvent.

        Returns:
            The DictationResult, or None when there was nothing to finish.
        """
        async with self._state_lock:
            session = self._session
            if session is None or self._state != DictationState.RECORDING:
                logger.debug("finish() called with no recording session")
                return None
            self._set_state(DictationState.FINALIZING)

        self._smart_stop.cancel()
        operation_id = f"dictation_finalize_{session.session_id}"
        await self.event_bus.register_critical_operation(operation_id)

        try:
            try:
                await session.recognition.stop()
            except Exception as e:
                logger.error(f"Error stopping dictation recognition: {e}", exc_info=True)

            audio = await self._release_capture(session)

            result = DictationResult(
                transcript=session.transcript,
                audio=audio.data if audio else None,
                mime_type=audio.mime_type if audio else None,
                duration_ms=int((self._clock() - session.start_time) * 1000),
            )
            audio_url = to_data_url(audio.data, audio.mime_type) if audio else None

            await self.event_bus.publish(
                ListeningFinishedEvent(mode=ListeningMode.DICTATION, audio_url=audio_url, result=result, reason=reason)
            )
            logger.info(
                f"Dictation session {session.session_id} finished ({reason}): "
                f"{len(session.segments)} segments, audio={'yes' if audio else 'no'}, {result.duration_ms}ms"
            )
            return result
        finally:
            async with self._state_lock:
                self._session = None
                self._set_state(DictationState.IDLE)
            await self.event_bus.unregister_critical_operation(operation_id)

    async def _release_capture(self, session: DictationSession) -> Optional[CapturedAudio]:
        if session.capture is None:
            return None

        try:
            audio = await session.capture.stop()
        except Exception as e:
            logger.error(f"Error stopping audio capture: {e}", exc_info=True)
            await self.event_bus.publish(
                VoiceErrorEvent(message="Audio recording could not be saved", kind="capture", fatal=False)
            )
            return None

        if audio is None or not audio.data:
            return None
        return audio

    def pending_callbacks(self) -> List[asyncio.Task]:
        return self._smart_stop.pending_callbacks()
