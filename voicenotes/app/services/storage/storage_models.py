from pydantic import BaseModel, Field


class StorageData(BaseModel):
    """Base class for persisted models with versioning support."""

    version: int = Field(default=1, description="Schema version for migrations")


class VoicePreferencesData(StorageData):
    """Persisted voice preferences.

    Attributes:
        hands_free_mode: Listen for the wake phrase whenever the app is running.
    """

    hands_free_mode: bool = Field(default=False, description="Start ambient listening automatically")
