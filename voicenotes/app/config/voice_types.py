import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class VoiceState(str, Enum):
    """The single active state of the mode controller."""

    IDLE = "idle"
    AMBIENT_LISTENING = "ambient_listening"
    COMMAND_MODE = "command_mode"
    DICTATION_MODE = "dictation_mode"


class ListeningMode(str, Enum):
    """Mode requested through start_listening and reported in listening events."""

    AMBIENT = "ambient"
    COMMAND = "command"
    DICTATION = "dictation"

    @property
    def state(self) -> VoiceState:
        return _MODE_TO_STATE[self]


_MODE_TO_STATE = {
    ListeningMode.AMBIENT: VoiceState.AMBIENT_LISTENING,
    ListeningMode.COMMAND: VoiceState.COMMAND_MODE,
    ListeningMode.DICTATION: VoiceState.DICTATION_MODE,
}


def mode_for_state(state: VoiceState) -> Optional[ListeningMode]:
    """Listening mode backing a state, None for IDLE."""
    for mode, mode_state in _MODE_TO_STATE.items():
        if mode_state == state:
            return mode
    return None


class TranscriptSegment(BaseModel):
    """One recognition result, interim or final.

    Attributes:
        text: Recognized text.
        is_final: Final segments are immutable; interim ones may still be revised.
        timestamp: Wall clock time the segment was produced.
    """

    text: str
    is_final: bool
    timestamp: float = Field(default_factory=time.time)


class CapturedAudio(BaseModel):
    """Encoded audio handed back by a capture session when it stops."""

    data: bytes
    mime_type: str
    duration_ms: int = 0


class DictationResult(BaseModel):
    """Final artifact of one dictation session.

    Attributes:
        transcript: Finalized dictation segments joined by single spaces.
        audio: Encoded recording, absent when capture was unavailable.
        mime_type: Media type of audio.
        duration_ms: Time from session start to finalization.
    """

    transcript: str = ""
    audio: Optional[bytes] = None
    mime_type: Optional[str] = None
    duration_ms: int = 0

    @property
    def has_audio(self) -> bool:
        return bool(self.audio)
