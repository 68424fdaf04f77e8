import asyncio

import pytest
import pytest_asyncio

from voicenotes.app.events.voice_events import DictationFinalizedEvent, ListeningFinishedEvent, VoiceErrorEvent
from voicenotes.app.services.audio.errors import PermissionDeniedError
from voicenotes.app.services.voice.dictation_coordinator import DictationCoordinator, DictationState


async def _noop(*args):
    return None


@pytest.fixture
def coordinator(event_bus, app_config, capture_service, clock):
    return DictationCoordinator(event_bus=event_bus, config=app_config, capture_service=capture_service, clock=clock)


@pytest_asyncio.fixture
async def recognition(recognition_service):
    session = recognition_service.create_session(True, True, _noop, _noop, _noop)
    await session.start()
    return session


@pytest.mark.asyncio
async def test_begin_starts_capture(coordinator, recognition, capture_service):
    session = await coordinator.begin(recognition)

    assert coordinator.state == DictationState.RECORDING
    assert coordinator.owns(recognition)
    assert session.capture is capture_service.sessions[0]
    assert capture_service.sessions[0].started
    assert not session.capture_failed


@pytest.mark.asyncio
async def test_begin_twice_is_rejected(coordinator, recognition):
    await coordinator.begin(recognition)

    with pytest.raises(ValueError):
        await coordinator.begin(recognition)


@pytest.mark.asyncio
async def test_finish_publishes_one_result(coordinator, recognition, recorder, event_bus, clock):
    await coordinator.begin(recognition)
    await coordinator.add_segment("first line")
    await coordinator.add_segment("  second line ")
    clock.advance(2.5)

    result = await coordinator.finish("stopped")
    await event_bus.drain()

    assert result.transcript == "first line second line"
    assert result.audio == b"RIFF-fake-wave-data"
    assert result.mime_type == "audio/wav"
    assert result.duration_ms == 2500

    finished = recorder.of(ListeningFinishedEvent)
    assert len(finished) == 1
    assert finished[0].reason == "stopped"
    assert finished[0].audio_url.startswith("data:audio/wav;base64,")
    assert [event.transcript for event in recorder.of(DictationFinalizedEvent)] == ["first line", "second line"]
    assert coordinator.state == DictationState.IDLE
    assert coordinator.session is None


@pytest.mark.asyncio
async def test_finish_stops_recognition_before_capture(coordinator, recognition, capture_service):
    await coordinator.begin(recognition)
    await coordinator.finish()

    assert recognition.stopped
    assert capture_service.sessions[0].stopped
    assert capture_service.sessions[0].stopped_after_recognition is True


@pytest.mark.asyncio
async def test_finish_without_session_returns_none(coordinator, recorder, event_bus):
    assert await coordinator.finish() is None
    await event_bus.drain()

    assert not recorder.of(ListeningFinishedEvent)


@pytest.mark.asyncio
async def test_second_finish_is_noop(coordinator, recognition, recorder, event_bus):
    await coordinator.begin(recognition)
    results = await asyncio.gather(coordinator.finish("stopped"), coordinator.finish("smart_stop"))
    await event_bus.drain()

    assert sum(result is not None for result in results) == 1
    assert len(recorder.of(ListeningFinishedEvent)) == 1


@pytest.mark.asyncio
async def test_capture_failure_is_non_fatal(coordinator, recognition, capture_service, recorder, event_bus):
    capture_service.start_error = PermissionDeniedError()

    session = await coordinator.begin(recognition)
    await coordinator.add_segment("still transcribed")
    result = await coordinator.finish()
    await event_bus.drain()

    assert session.capture_failed
    assert result.transcript == "still transcribed"
    assert result.audio is None
    assert recorder.of(ListeningFinishedEvent)[0].audio_url is None

    errors = recorder.of(VoiceErrorEvent)
    assert len(errors) == 1
    assert errors[0].kind == "capture"
    assert errors[0].fatal is False


@pytest.mark.asyncio
async def test_without_capture_service_is_transcript_only(event_bus, app_config, recognition):
    coordinator = DictationCoordinator(event_bus=event_bus, config=app_config)

    session = await coordinator.begin(recognition)
    result = await coordinator.finish()

    assert session.capture_failed
    assert result.has_audio is False


@pytest.mark.asyncio
async def test_empty_capture_yields_no_audio(coordinator, recognition, capture_service):
    capture_service.audio = b""

    await coordinator.begin(recognition)
    result = await coordinator.finish()

    assert result.audio is None


@pytest.mark.asyncio
async def test_smart_stop_calls_back_with_session_id(event_bus, app_config, capture_service, recognition):
    app_config.dictation.smart_stop_silence_seconds = 0.02
    fired = []

    async def on_smart_stop(session_id):
        fired.append(session_id)

    coordinator = DictationCoordinator(
        event_bus=event_bus, config=app_config, capture_service=capture_service, on_smart_stop=on_smart_stop
    )
    session = await coordinator.begin(recognition)
    await asyncio.sleep(0.1)

    assert fired == [session.session_id]
    await coordinator.finish()


@pytest.mark.asyncio
async def test_activity_rearms_smart_stop(event_bus, app_config, capture_service, recognition):
    app_config.dictation.smart_stop_silence_seconds = 0.1
    fired = []

    async def on_smart_stop(session_id):
        fired.append(session_id)

    coordinator = DictationCoordinator(
        event_bus=event_bus, config=app_config, capture_service=capture_service, on_smart_stop=on_smart_stop
    )
    await coordinator.begin(recognition)
    for _ in range(3):
        await asyncio.sleep(0.05)
        coordinator.note_activity()

    assert fired == []
    await coordinator.finish()


@pytest.mark.asyncio
async def test_smart_stop_disabled(event_bus, app_config, capture_service, recognition):
    app_config.dictation.smart_stop_enabled = False
    app_config.dictation.smart_stop_silence_seconds = 0.01
    fired = []

    async def on_smart_stop(session_id):
        fired.append(session_id)

    coordinator = DictationCoordinator(
        event_bus=event_bus, config=app_config, capture_service=capture_service, on_smart_stop=on_smart_stop
    )
    await coordinator.begin(recognition)
    await asyncio.sleep(0.05)

    assert fired == []
    await coordinator.finish()


@pytest.mark.asyncio
async def test_finish_blocks_bus_shutdown_while_running(coordinator, recognition, recognition_service, event_bus):
    recognition_service.stop_delay = 0.05
    await coordinator.begin(recognition)

    finishing = asyncio.create_task(coordinator.finish())
    await asyncio.sleep(0.01)
    assert await event_bus.has_critical_operations()

    await finishing
    assert not await event_bus.has_critical_operations()
