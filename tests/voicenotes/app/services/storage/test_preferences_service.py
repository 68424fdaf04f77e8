import json

import pytest
import pytest_asyncio

from voicenotes.app.config.voice_types import VoiceState
from voicenotes.app.services.storage.preferences_service import PreferencesService
from voicenotes.app.services.storage.storage_models import VoicePreferencesData
from voicenotes.app.services.voice.mode_controller import ModeController


@pytest_asyncio.fixture
async def preferences(app_config):
    service = PreferencesService(app_config)
    yield service
    await service.shutdown()


@pytest.mark.asyncio
async def test_load_defaults_when_missing(preferences):
    data = await preferences.load()

    assert data.hands_free_mode is False
    assert not preferences.path.exists()


@pytest.mark.asyncio
async def test_save_and_reload(preferences, app_config):
    assert await preferences.set_hands_free(True)

    on_disk = json.loads(preferences.path.read_text(encoding="utf-8"))
    assert on_disk["hands_free_mode"] is True
    assert on_disk["version"] == 1

    fresh = PreferencesService(app_config)
    try:
        assert (await fresh.load()).hands_free_mode is True
    finally:
        await fresh.shutdown()


@pytest.mark.asyncio
async def test_save_leaves_no_temp_files(preferences):
    await preferences.save(VoicePreferencesData(hands_free_mode=True))
    await preferences.save(VoicePreferencesData(hands_free_mode=False))

    assert [path.name for path in preferences.path.parent.iterdir()] == ["voice_preferences.json"]


@pytest.mark.asyncio
async def test_corrupt_file_falls_back_to_defaults(preferences):
    preferences.path.parent.mkdir(parents=True)
    preferences.path.write_text("{not json", encoding="utf-8")

    assert (await preferences.load()).hands_free_mode is False


@pytest.mark.asyncio
async def test_clear_cache_rereads_file(preferences):
    await preferences.load()
    preferences.path.parent.mkdir(parents=True)
    preferences.path.write_text(json.dumps({"version": 1, "hands_free_mode": True}), encoding="utf-8")

    assert (await preferences.load()).hands_free_mode is False
    preferences.clear_cache()
    assert (await preferences.load()).hands_free_mode is True


@pytest.mark.asyncio
async def test_controller_restores_and_persists_hands_free(
    preferences, event_bus, app_config, recognition_service, capture_service
):
    await preferences.set_hands_free(True)

    controller = ModeController(
        event_bus=event_bus,
        config=app_config,
        recognition_service=recognition_service,
        capture_service=capture_service,
        preferences=preferences,
    )
    try:
        assert await controller.initialize()
        assert controller.hands_free
        assert controller.state == VoiceState.AMBIENT_LISTENING

        await controller.set_hands_free(False)
        assert controller.state == VoiceState.IDLE
        preferences.clear_cache()
        assert (await preferences.load()).hands_free_mode is False
    finally:
        await controller.shutdown()


@pytest.mark.asyncio
async def test_run_only_hands_free_keeps_saved_preference(
    preferences, event_bus, app_config, recognition_service, capture_service
):
    await preferences.set_hands_free(True)

    controller = ModeController(
        event_bus=event_bus,
        config=app_config,
        recognition_service=recognition_service,
        capture_service=capture_service,
        preferences=preferences,
    )
    try:
        assert await controller.initialize()
        await controller.set_hands_free(False, persist=False)

        assert controller.state == VoiceState.IDLE
        preferences.clear_cache()
        assert (await preferences.load()).hands_free_mode is True
    finally:
        await controller.shutdown()
