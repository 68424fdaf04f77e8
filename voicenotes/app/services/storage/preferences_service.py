import asyncio
import json
import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.services.storage.storage_models import VoicePreferencesData

logger = logging.getLogger(__name__)


class PreferencesService:
    """JSON persistence for VoicePreferencesData with atomic writes.

    File I/O runs on a small executor so the event loop never blocks on disk. The last
    value read or written is cached in memory.
    """

    def __init__(self, config: GlobalAppConfig) -> None:
        self._config = config
        self._path = Path(config.storage.settings_dir) / config.storage.preferences_filename
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="Preferences")
        self._cached: Optional[VoicePreferencesData] = None

        logger.debug(f"PreferencesService initialized with file: {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> VoicePreferencesData:
        """Read preferences, falling back to defaults when the file is missing or invalid."""
        with self._lock:
            if self._cached is not None:
                return self._cached

        if not self._path.exists():
            logger.debug(f"Preferences file does not exist: {self._path}, using defaults")
            result = VoicePreferencesData()
        else:
            try:
                loop = asyncio.get_running_loop()
                data_dict = await loop.run_in_executor(self._executor, self._read_json, self._path)
                result = VoicePreferencesData.model_validate(data_dict)
            except (ValidationError, ValueError, OSError) as e:
                logger.error(f"Error reading preferences from {self._path}: {e}")
                result = VoicePreferencesData()

        with self._lock:
            self._cached = result
        return result

    async def save(self, data: VoicePreferencesData) -> bool:
        """Write preferences atomically.

        Returns:
            True if the write succeeded.
        """
        loop = asyncio.get_running_loop()
        success = await loop.run_in_executor(self._executor, self._write_json, self._path, data.model_dump(mode="json"))
        if success:
            with self._lock:
                self._cached = data
            logger.debug(f"Saved voice preferences to {self._path}")
        return success

    async def set_hands_free(self, enabled: bool) -> bool:
        current = await self.load()
        return await self.save(current.model_copy(update={"hands_free_mode": enabled}))

    def _read_json(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_json(self, path: Path, data: Dict[str, Any]) -> bool:
        temp_path = path.with_suffix(f".tmp.{uuid.uuid4().hex}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, path)
            return True
        except OSError as e:
            logger.error(f"Error writing JSON to {path}: {e}")
            if temp_path.exists():
                os.remove(temp_path)
            return False

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None

    async def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.debug("PreferencesService shutdown complete")
