import asyncio
import uuid
from typing import List, Optional, Type

import pytest
import pytest_asyncio

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.config.logging_config import LoggingConfigModel
from voicenotes.app.config.voice_types import CapturedAudio, TranscriptSegment
from voicenotes.app.event_bus import EventBus
from voicenotes.app.events.base_event import BaseEvent
from voicenotes.app.services.audio.errors import RecognitionEngineError
from voicenotes.app.services.voice.mode_controller import ModeController


class ManualClock:
    """Seconds clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRecognitionSession:
    def __init__(self, service: "FakeRecognitionService", continuous, interim_results, on_result, on_error, on_end):
        self.session_id = f"rec-{uuid.uuid4().hex[:8]}"
        self.service = service
        self.continuous = continuous
        self.interim_results = interim_results
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end
        self.live = False
        self.started = False
        self.stopped = False
        self.pending_finals: List[str] = []

    async def start(self) -> None:
        self.service.acquisitions += 1
        if self.service.start_delay:
            await asyncio.sleep(self.service.start_delay)
        if self.service.start_failures:
            raise self.service.start_failures.pop(0)
        self.started = True
        self._go_live()

    def _go_live(self) -> None:
        self.live = True
        self.service.live_count += 1
        self.service.max_live = max(self.service.max_live, self.service.live_count)

    def _go_dead(self) -> None:
        if self.live:
            self.live = False
            self.service.live_count -= 1

    async def stop(self) -> None:
        self.stopped = True
        if not self.live:
            return
        if self.service.stop_delay:
            await asyncio.sleep(self.service.stop_delay)
        for text in self.pending_finals:
            await self._on_result(self, TranscriptSegment(text=text, is_final=True))
        self.pending_finals.clear()
        self._go_dead()
        await self._on_end(self)

    async def final(self, text: str) -> None:
        await self._on_result(self, TranscriptSegment(text=text, is_final=True))

    async def interim(self, text: str) -> None:
        await self._on_result(self, TranscriptSegment(text=text, is_final=False))

    async def error(self, code: str) -> None:
        await self._on_error(self, RecognitionEngineError(code))

    async def end(self) -> None:
        """The engine ends the stream on its own."""
        self._go_dead()
        await self._on_end(self)


class FakeRecognitionService:
    def __init__(self) -> None:
        self.available = True
        self.sessions: List[FakeRecognitionSession] = []
        self.acquisitions = 0
        self.live_count = 0
        self.max_live = 0
        self.start_delay = 0.0
        self.stop_delay = 0.0
        self.start_failures: List[Exception] = []

    def is_available(self) -> bool:
        return self.available

    def create_session(self, continuous, interim_results, on_result, on_error, on_end) -> FakeRecognitionSession:
        session = FakeRecognitionSession(self, continuous, interim_results, on_result, on_error, on_end)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> Optional[FakeRecognitionSession]:
        return self.sessions[-1] if self.sessions else None

    @property
    def live_sessions(self) -> List[FakeRecognitionSession]:
        return [session for session in self.sessions if session.live]


class FakeCaptureSession:
    def __init__(self, service: "FakeCaptureService") -> None:
        self.session_id = f"cap-{uuid.uuid4().hex[:8]}"
        self.service = service
        self.started = False
        self.stopped = False
        self.stopped_after_recognition: Optional[bool] = None

    async def start(self) -> None:
        if self.service.start_error is not None:
            raise self.service.start_error
        self.started = True

    async def stop(self) -> Optional[CapturedAudio]:
        self.stopped = True
        recognition = self.service.recognition_service
        if recognition is not None:
            self.stopped_after_recognition = recognition.live_count == 0
        if not self.service.audio:
            return None
        return CapturedAudio(data=self.service.audio, mime_type="audio/wav", duration_ms=1200)


class FakeCaptureService:
    def __init__(self, recognition_service: Optional[FakeRecognitionService] = None) -> None:
        self.recognition_service = recognition_service
        self.sessions: List[FakeCaptureSession] = []
        self.start_error: Optional[Exception] = None
        self.audio: bytes = b"RIFF-fake-wave-data"

    def create_session(self) -> FakeCaptureSession:
        session = FakeCaptureSession(self)
        self.sessions.append(session)
        return session


class EventRecorder:
    """Collects every event published on the bus."""

    def __init__(self) -> None:
        self.events: List[BaseEvent] = []

    def __call__(self, event: BaseEvent) -> None:
        self.events.append(event)

    def of(self, event_type: Type[BaseEvent]) -> List[BaseEvent]:
        return [event for event in self.events if isinstance(event, event_type)]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def app_config(tmp_path):
    """Configuration with short timers and storage isolated in tmp_path."""
    config = GlobalAppConfig(logging=LoggingConfigModel(enable_logs=False))
    config.storage.user_data_root = str(tmp_path)
    config.storage.settings_dir = str(tmp_path / "settings")
    config.voice.command_reset_timeout_seconds = 1.0
    config.voice.hands_free_restart_delay_seconds = 0.05
    config.voice.permission_retry_backoff_seconds = 0.05
    config.dictation.smart_stop_silence_seconds = 1.0
    return config


@pytest_asyncio.fixture
async def event_bus():
    bus = EventBus(high_priority_sleep=0, low_priority_sleep=0)
    await bus.start_worker()
    yield bus
    await bus.stop_worker()


@pytest.fixture
def recorder(event_bus):
    events = EventRecorder()
    event_bus.subscribe(BaseEvent, events)
    return events


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def recognition_service():
    return FakeRecognitionService()


@pytest.fixture
def capture_service(recognition_service):
    return FakeCaptureService(recognition_service)


@pytest_asyncio.fixture
async def controller(event_bus, app_config, recognition_service, capture_service, clock):
    mode_controller = ModeController(
        event_bus=event_bus,
        config=app_config,
        recognition_service=recognition_service,
        capture_service=capture_service,
        clock=clock,
    )
    yield mode_controller
    await mode_controller.shutdown()


@pytest.fixture
def settle(controller, event_bus):
    """Wait for session work, timer callbacks and event delivery to finish."""

    async def _settle() -> None:
        await controller.settle()
        await event_bus.drain()

    return _settle
