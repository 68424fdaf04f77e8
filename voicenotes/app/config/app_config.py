import logging
import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from voicenotes.app.config.logging_config import LoggingConfigModel

logger = logging.getLogger(__name__)


class VoiceConfig(BaseModel):
    """Wake phrase, command window and recovery timing for the mode controller.

    The duplicate window and restart delays are tuning values rather than contracts,
    which is why they live here instead of as constants.
    """

    wake_phrase: str = Field(default="hey notes", description="Phrase that moves ambient listening into command mode")
    language: str = Field(default="en-US", description="Recognition language tag")
    command_reset_timeout_seconds: float = Field(
        default=5.0, description="Seconds command mode waits for a command before returning to ambient listening"
    )
    duplicate_window_ms: float = Field(
        default=1500, description="Repeated matches of the same keyword inside this window are dropped"
    )
    hands_free_restart_delay_seconds: float = Field(
        default=0.5, description="Delay before ambient listening restarts after the recognizer ends on its own"
    )
    permission_retry_backoff_seconds: float = Field(
        default=2.0, description="Delay before hands-free mode retries after a permission or device failure"
    )
    transient_error_codes: List[str] = Field(
        default_factory=lambda: ["no-speech", "aborted", "audio-capture", "network"],
        description="Recognition error codes that are logged and ignored",
    )


class DictationConfig(BaseModel):
    """Smart Stop behaviour for dictation sessions."""

    smart_stop_enabled: bool = True
    smart_stop_silence_seconds: float = Field(
        default=3.5, description="Quiet period with no finalized speech after which dictation finalizes itself"
    )


class AudioConfig(BaseModel):
    """Capture format and device selection for dictation recordings."""

    sample_rate: int = 16000
    channels: int = 1
    dtype: Literal["int16", "float32", "int32"] = Field(
        "int16", description="Data type of audio samples (e.g., 'int16', 'float32')."
    )
    device: Optional[int] = None
    mime_type: str = "audio/wav"
    chunk_duration_ms: int = Field(default=50, description="Block size handed to the capture callback")


class STTConfig(BaseModel):
    """Offline recognizer settings."""

    vosk_model_path: Optional[str] = Field(default=None, description="Directory of an unpacked Vosk model")
    vosk_model_lang: str = Field(default="en-us", description="Language used when no model path is given")
    sample_rate: int = 16000
    block_duration_ms: int = 100


class AppInfoConfig(BaseModel):
    default_app_name_for_data_dir: str = Field(default="voicenotes", description="Default app name for data directory")
    user_data_dir_suffix: str = Field(default="_data", description="Suffix for user data directory")


class StorageConfig(BaseModel):
    """Where persisted preferences live. Paths resolve in GlobalAppConfig.__init__."""

    settings_subdir: str = "settings"
    preferences_filename: str = "voice_preferences.json"
    user_data_root: Optional[str] = None
    settings_dir: Optional[str] = None


class GlobalAppConfig(BaseModel):
    """Aggregate configuration for the voice control core."""

    logging: LoggingConfigModel = Field(default_factory=LoggingConfigModel)
    app_info: AppInfoConfig = Field(default_factory=AppInfoConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    dictation: DictationConfig = Field(default_factory=DictationConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    stt: STTConfig = Field(default_factory=STTConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def __init__(self, **data: any) -> None:
        super().__init__(**data)
        self._setup_storage_paths()

    def _setup_storage_paths(self) -> None:
        """Fill in storage paths that were not set explicitly.

        Directories are not created here; the storage layer creates them on first write.
        """
        storage = self.storage
        if storage.user_data_root is None:
            storage.user_data_root = get_default_user_data_root(app_info=self.app_info)
        if storage.settings_dir is None:
            storage.settings_dir = os.path.join(storage.user_data_root, storage.settings_subdir)


CONFIG_FILE_NAME = "settings.yaml"
DEFAULT_CONFIG_DIR_NAME = "config"


def get_config_path(config_dir: Optional[str] = None, config_file: str = CONFIG_FILE_NAME) -> str:
    """Resolve the YAML config location.

    An explicit directory wins; otherwise the repository's config/ folder is used.

    Args:
        config_dir: Optional custom config directory path.
        config_file: Configuration filename (defaults to settings.yaml).

    Returns:
        Absolute path to configuration file.
    """
    if config_dir:
        return os.path.join(config_dir, config_file)

    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    return os.path.join(project_root, DEFAULT_CONFIG_DIR_NAME, config_file)


def load_app_config(config_path: Optional[str] = None) -> GlobalAppConfig:
    """Load configuration from YAML with fallback to defaults.

    Values are read from the 'app' root key. A missing file, an empty file, or a file
    without the 'app' key yields the defaults. Parse errors are logged and re-raised.

    Args:
        config_path: Optional explicit path to configuration file.

    Returns:
        GlobalAppConfig with overrides applied.
    """
    actual_config_path = config_path or get_config_path()
    logger.debug(f"Loading application configuration from: {actual_config_path}")

    try:
        with open(actual_config_path, "r") as f:
            config_data = yaml.safe_load(f)
        if not config_data or "app" not in config_data:
            logger.warning(f"Configuration file {actual_config_path} is empty or missing 'app' root. Using defaults.")
            return GlobalAppConfig()
        return GlobalAppConfig(**config_data.get("app", {}))
    except FileNotFoundError:
        logger.warning(f"Configuration file not found at {actual_config_path}. Using defaults.")
        return GlobalAppConfig()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration file {actual_config_path}: {e}")
        raise


def get_default_user_data_root(app_info: AppInfoConfig) -> str:
    """User data root following OS conventions (%APPDATA% on Windows, home elsewhere)."""
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
    else:
        base = os.path.expanduser("~")
    return os.path.join(base, app_info.default_app_name_for_data_dir + app_info.user_data_dir_suffix)
