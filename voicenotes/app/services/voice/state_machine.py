"""Pure transition function for the voice mode controller.

transition(state, input, context) returns the next state and the effects the controller
must carry out. Nothing here touches sessions, timers or the event bus, so every rule
can be tested directly.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from voicenotes.app.config.command_types import CommandMatch
from voicenotes.app.config.voice_command_registry import START_DICTATION, STOP_DICTATION
from voicenotes.app.config.voice_types import ListeningMode, VoiceState, mode_for_state


@dataclass(frozen=True)
class TransitionContext:
    """Controller flags the rules depend on.

    Attributes:
        hands_free: Persisted hands-free preference.
        ambient_requested: Ambient listening was started explicitly and not stopped since.
    """

    hands_free: bool = False
    ambient_requested: bool = False

    @property
    def ambient_enabled(self) -> bool:
        return self.hands_free or self.ambient_requested

    @property
    def home(self) -> VoiceState:
        """State a finished command or dictation session returns to."""
        return VoiceState.AMBIENT_LISTENING if self.ambient_enabled else VoiceState.IDLE


# Inputs


@dataclass(frozen=True)
class StartRequested:
    mode: ListeningMode


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class ShutdownRequested:
    pass


@dataclass(frozen=True)
class HandsFreeChanged:
    enabled: bool


@dataclass(frozen=True)
class WakePhraseHeard:
    transcript: str = ""


@dataclass(frozen=True)
class CommandRecognized:
    match: CommandMatch


@dataclass(frozen=True)
class CommandSuppressed:
    keyword: str


@dataclass(frozen=True)
class TranscriptUnmatched:
    text: str


@dataclass(frozen=True)
class InterimTranscript:
    text: str
    possibly_command: bool
    completions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResetTimerExpired:
    pass


@dataclass(frozen=True)
class SmartStopExpired:
    pass


@dataclass(frozen=True)
class SessionFailed:
    mode: ListeningMode
    kind: str
    message: str


@dataclass(frozen=True)
class RecognitionFailed:
    message: str
    code: Optional[str] = None
    transient: bool = False


@dataclass(frozen=True)
class SessionEnded:
    pass


@dataclass(frozen=True)
class RestartDue:
    pass


# Effects


class TimerKind(str, Enum):
    RESET = "command_reset"
    RESTART = "hands_free_restart"
    RETRY = "permission_retry"


@dataclass(frozen=True)
class StopSession:
    reason: str


@dataclass(frozen=True)
class StartSession:
    mode: ListeningMode


@dataclass(frozen=True)
class ArmTimer:
    timer: TimerKind


@dataclass(frozen=True)
class EmitStatus:
    status: str
    message: str
    completions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DispatchCommand:
    match: CommandMatch


@dataclass(frozen=True)
class ForwardInterim:
    text: str


@dataclass(frozen=True)
class AppendDictation:
    text: str


@dataclass(frozen=True)
class NoteSpeechActivity:
    pass


@dataclass(frozen=True)
class ReportError:
    message: str
    kind: str
    fatal: bool = True


@dataclass(frozen=True)
class SetAmbientRequested:
    value: bool


RESOURCE_EFFECTS = (StopSession, StartSession)


@dataclass(frozen=True)
class Transition:
    state: VoiceState
    effects: Tuple[object, ...] = field(default_factory=tuple)

    @property
    def resource_effects(self) -> List[object]:
        return [effect for effect in self.effects if isinstance(effect, RESOURCE_EFFECTS)]

    @property
    def other_effects(self) -> List[object]:
        return [effect for effect in self.effects if not isinstance(effect, RESOURCE_EFFECTS)]


def _stay(state: VoiceState, *effects: object) -> Transition:
    return Transition(state, tuple(effects))


def _move(current: VoiceState, target: VoiceState, reason: str, *extra: object) -> Transition:
    """Move between states, releasing the current session and acquiring the target's."""
    effects: List[object] = []
    if target != current:
        if current != VoiceState.IDLE:
            effects.append(StopSession(reason))
        target_mode = mode_for_state(target)
        if target_mode is not None:
            effects.append(StartSession(target_mode))
    effects.extend(extra)
    return Transition(target, tuple(effects))


def _on_start(state: VoiceState, event: StartRequested, ctx: TransitionContext) -> Transition:
    target = event.mode.state
    extra: List[object] = []
    if event.mode == ListeningMode.AMBIENT:
        extra.append(SetAmbientRequested(True))
    if target == state:
        return _stay(state, *extra)
    if event.mode == ListeningMode.COMMAND:
        extra.append(ArmTimer(TimerKind.RESET))
    return _move(state, target, "switched", *extra)


def _on_stop(state: VoiceState, ctx: TransitionContext) -> Transition:
    if state in (VoiceState.IDLE, VoiceState.AMBIENT_LISTENING):
        return _move(state, VoiceState.IDLE, "stopped", SetAmbientRequested(False), EmitStatus("ready", "Voice commands ready"))
    return _move(state, ctx.home, "stopped")


def _on_command(state: VoiceState, event: CommandRecognized, ctx: TransitionContext) -> Transition:
    name = event.match.command.name

    if state == VoiceState.COMMAND_MODE:
        if name == START_DICTATION:
            return _move(state, VoiceState.DICTATION_MODE, "command")
        if name == STOP_DICTATION:
            return _move(state, ctx.home, "command")
        return _move(state, ctx.home, "command", DispatchCommand(event.match))

    if state == VoiceState.DICTATION_MODE:
        if name == STOP_DICTATION:
            return _move(state, ctx.home, "command")
        if name == START_DICTATION:
            return _stay(state, NoteSpeechActivity())
        return _stay(state, DispatchCommand(event.match), NoteSpeechActivity())

    return _stay(state)


def _on_failure(state: VoiceState, event: SessionFailed, ctx: TransitionContext) -> Transition:
    status = "Mic access denied" if event.kind == "permission" else event.message
    extra: List[object] = [ReportError(event.message, event.kind), EmitStatus("error", status)]
    if ctx.hands_free:
        extra.append(ArmTimer(TimerKind.RETRY))
    else:
        extra.append(SetAmbientRequested(False))
    return _move(state, VoiceState.IDLE, "error", *extra)


def transition(state: VoiceState, event: object, ctx: TransitionContext) -> Transition:
    """Compute the next state and effects for one input.

    Args:
        state: Current state.
        event: One of the input dataclasses above.
        ctx: Flags the rules depend on.

    Returns:
        Transition with the next state and ordered effects. Unknown or irrelevant
        inputs leave the state unchanged with no effects.
    """
    if isinstance(event, StartRequested):
        return _on_start(state, event, ctx)

    if isinstance(event, StopRequested):
        return _on_stop(state, ctx)

    if isinstance(event, ShutdownRequested):
        return _move(state, VoiceState.IDLE, "shutdown", SetAmbientRequested(False))

    if isinstance(event, HandsFreeChanged):
        if event.enabled and state == VoiceState.IDLE:
            return _move(state, VoiceState.AMBIENT_LISTENING, "hands_free")
        if not event.enabled and state == VoiceState.AMBIENT_LISTENING:
            return _move(state, VoiceState.IDLE, "hands_free", SetAmbientRequested(False))
        return _stay(state)

    if isinstance(event, WakePhraseHeard):
        if state != VoiceState.AMBIENT_LISTENING:
            return _stay(state)
        return _move(state, VoiceState.COMMAND_MODE, "wake_phrase", ArmTimer(TimerKind.RESET))

    if isinstance(event, CommandRecognized):
        return _on_command(state, event, ctx)

    if isinstance(event, CommandSuppressed):
        if state == VoiceState.DICTATION_MODE:
            return _stay(state, NoteSpeechActivity())
        return _stay(state)

    if isinstance(event, TranscriptUnmatched):
        if state == VoiceState.DICTATION_MODE:
            return _stay(state, AppendDictation(event.text), NoteSpeechActivity())
        return _stay(state)

    if isinstance(event, InterimTranscript):
        if state != VoiceState.DICTATION_MODE:
            return _stay(state)
        if event.possibly_command:
            return _stay(state, EmitStatus("recording", f'Command detected: "{event.text}"', event.completions))
        return _stay(state, ForwardInterim(event.text))

    if isinstance(event, ResetTimerExpired):
        if state == VoiceState.COMMAND_MODE:
            return _move(state, ctx.home, "timeout")
        return _stay(state)

    if isinstance(event, SmartStopExpired):
        if state == VoiceState.DICTATION_MODE:
            return _move(state, ctx.home, "smart_stop")
        return _stay(state)

    if isinstance(event, SessionFailed):
        if state != event.mode.state:
            return _stay(state)
        return _on_failure(state, event, ctx)

    if isinstance(event, RecognitionFailed):
        if event.transient or state == VoiceState.IDLE:
            return _stay(state)
        extra: List[object] = [ReportError(event.message, "recognition")]
        extra.append(ArmTimer(TimerKind.RETRY) if ctx.hands_free else SetAmbientRequested(False))
        return _move(state, VoiceState.IDLE, "error", *extra)

    if isinstance(event, SessionEnded):
        if state == VoiceState.IDLE:
            return _stay(state)
        extra = [ArmTimer(TimerKind.RESTART) if ctx.hands_free else SetAmbientRequested(False)]
        return _move(state, VoiceState.IDLE, "ended", *extra)

    if isinstance(event, RestartDue):
        if state == VoiceState.IDLE and ctx.hands_free:
            return _move(state, VoiceState.AMBIENT_LISTENING, "restart")
        return _stay(state)

    return _stay(state)
