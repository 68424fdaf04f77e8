from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from voicenotes.app.config.command_types import CommandKind, VoiceCommand
from voicenotes.app.config.voice_types import DictationResult, ListeningMode, VoiceState
from voicenotes.app.events.base_event import BaseEvent, EventPriority


class StatusUpdateEvent(BaseEvent):
    """Human readable status line for the microphone indicator.

    Attributes:
        status: Machine friendly status key (ready, ambient, command, dictating, command_detected, error, ...).
        message: Text shown to the user.
        completions: Keywords an interim fragment could still complete, shown with "Command detected".
    """

    event_name: ClassVar[str] = "status-update"

    status: str = Field(..., description="Status key")
    message: str = Field(..., description="User facing status text")
    completions: List[str] = Field(default_factory=list, description="Possible command keywords")
    priority: EventPriority = EventPriority.LOW


class CommandPayload(BaseModel):
    """Serializable view of a matched command, without its handler."""

    name: str
    kind: CommandKind
    method: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def from_command(cls, command: VoiceCommand) -> "CommandPayload":
        return cls(name=command.name, kind=command.kind, method=command.method, value=command.value)


class CommandExecuteEvent(BaseEvent):
    """An editor command to run against the open note.

    Attributes:
        command: Name, kind, method and value of the command.
        argument: Trailing text spoken after the keyword, if any.
        transcript: Full transcript the command was found in.
    """

    event_name: ClassVar[str] = "command-execute"

    command: CommandPayload = Field(..., description="Matched command")
    argument: Optional[str] = Field(default=None, description="Text after the keyword")
    transcript: str = ""
    priority: EventPriority = EventPriority.HIGH


class AppCommandEvent(BaseEvent):
    """An app-level command with no directly bound handler.

    Attributes:
        action: Command name (save_note, close_editor, create_note, ai_query, ...).
        argument: Text after the keyword, the query for ai_query.
        transcript: Full transcript the command was found in.
    """

    event_name: ClassVar[str] = "app-command"

    action: str
    argument: Optional[str] = None
    transcript: str = ""
    priority: EventPriority = EventPriority.HIGH


class DictationUpdateEvent(BaseEvent):
    """Interim dictation text, replaced by the next update or by a finalized segment.

    Dictation text, editor commands and listening lifecycle events share HIGH priority so
    the bus delivers them in publish order and never drops them under backpressure.
    """

    event_name: ClassVar[str] = "dictation-update"

    transcript: str
    priority: EventPriority = EventPriority.HIGH


class DictationFinalizedEvent(BaseEvent):
    """A finalized dictation segment that is note content, not a command."""

    event_name: ClassVar[str] = "dictation-finalized"

    transcript: str
    priority: EventPriority = EventPriority.HIGH


class ListeningStartedEvent(BaseEvent):
    """A listening session for the given mode acquired its resources."""

    event_name: ClassVar[str] = "listening-started"

    mode: ListeningMode
    priority: EventPriority = EventPriority.HIGH


class ListeningFinishedEvent(BaseEvent):
    """A command or dictation session ended.

    Emitted exactly once per session. For dictation it carries the final result and,
    when audio was captured, the recording as a data: URL.

    Attributes:
        mode: Mode of the session that ended.
        audio_url: data: URL of the recording, if any.
        result: DictationResult for dictation sessions.
        reason: Why the session ended (stopped, smart_stop, command, timeout, error, ended, shutdown).
    """

    event_name: ClassVar[str] = "listening-finished"

    mode: ListeningMode
    audio_url: Optional[str] = None
    result: Optional[DictationResult] = None
    reason: str = "stopped"
    priority: EventPriority = EventPriority.HIGH


class VoiceErrorEvent(BaseEvent):
    """A user visible voice failure.

    Attributes:
        message: Description suitable for display.
        kind: permission, device, recognition, capture or internal.
        fatal: True when the failure ended the session.
        details: Optional diagnostic fields.
    """

    event_name: ClassVar[str] = "voice-error"

    message: str
    kind: Literal["permission", "device", "recognition", "capture", "internal"] = "internal"
    fatal: bool = True
    details: Optional[Dict[str, Any]] = None
    priority: EventPriority = EventPriority.HIGH


class VoiceStateChangedEvent(BaseEvent):
    """The mode controller moved from one state to another."""

    event_name: ClassVar[str] = "voice-state-changed"

    previous: VoiceState
    current: VoiceState
