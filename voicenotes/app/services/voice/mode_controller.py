import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Set

from voicenotes.app.config.app_config import GlobalAppConfig
from voicenotes.app.config.command_types import CommandMatch, CommandScope, DuplicateMatchResult
from voicenotes.app.config.voice_command_registry import CommandTable
from voicenotes.app.config.voice_types import ListeningMode, TranscriptSegment, VoiceState
from voicenotes.app.event_bus import EventBus
from voicenotes.app.events.voice_events import (
    AppCommandEvent,
    CommandExecuteEvent,
    CommandPayload,
    DictationUpdateEvent,
    ListeningFinishedEvent,
    ListeningStartedEvent,
    StatusUpdateEvent,
    VoiceErrorEvent,
    VoiceStateChangedEvent,
)
from voicenotes.app.services.audio.errors import RecognitionEngineError, VoiceServiceError
from voicenotes.app.services.audio.interfaces import CaptureService, RecognitionService, RecognitionSession
from voicenotes.app.services.deduplication.event_deduplicator import EventDeduplicator
from voicenotes.app.services.storage.preferences_service import PreferencesService
from voicenotes.app.services.voice.command_matcher import CommandMatcher, eligible_scopes
from voicenotes.app.services.voice.dictation_coordinator import DictationCoordinator
from voicenotes.app.services.voice.partial_match_predictor import PartialMatchPredictor
from voicenotes.app.services.voice.state_machine import (
    AppendDictation,
    ArmTimer,
    CommandRecognized,
    CommandSuppressed,
    DispatchCommand,
    EmitStatus,
    ForwardInterim,
    HandsFreeChanged,
    InterimTranscript,
    NoteSpeechActivity,
    RecognitionFailed,
    ReportError,
    ResetTimerExpired,
    RestartDue,
    SessionEnded,
    SessionFailed,
    SetAmbientRequested,
    ShutdownRequested,
    SmartStopExpired,
    StartRequested,
    StartSession,
    StopRequested,
    StopSession,
    TimerKind,
    TranscriptUnmatched,
    Transition,
    TransitionContext,
    WakePhraseHeard,
    transition,
)
from voicenotes.app.services.voice.timers import TimerGroup
from voicenotes.app.utils.text_utils import text_after

logger = logging.getLogger(__name__)


class ModeController:
    """Owns the voice state and every recognition session.

    Recognition callbacks are routed by the current state: ambient listening looks for
    the wake phrase, command mode matches one command, dictation separates commands from
    note text. Every input goes through the pure transition() function; this class carries
    out the resulting effects.

    Session start and stop work is serialized through one FIFO lock, so an active session
    never starts before the previous one has been torn down. Each transition that touches
    sessions bumps a generation counter; starts belonging to an older generation are
    skipped, or stopped at once if they completed late.

    The public coroutines never raise. Failures are published as VoiceErrorEvent.

    Attributes:
        _state: Current VoiceState.
        _recognition: The live recognition session, if any.
        _live_mode: Mode the live session was started for.
        _intentional_stop: Set synchronously when a stop is decided; end callbacks are
            ignored while it is set.
        _generation: Incremented by every transition with session effects.
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: GlobalAppConfig,
        recognition_service: RecognitionService,
        capture_service: Optional[CaptureService] = None,
        command_table: Optional[CommandTable] = None,
        preferences: Optional[PreferencesService] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            event_bus: EventBus all outbound events are published on.
            config: Global configuration.
            recognition_service: Factory for recognition sessions.
            capture_service: Factory for dictation audio capture; optional.
            command_table: Commands to match; the default registry when omitted.
            preferences: Persists the hands-free preference; optional.
            clock: Seconds clock shared by duplicate suppression and dictation timing.
        """
        self.event_bus = event_bus
        self.config = config
        self._recognition_service = recognition_service
        self._preferences = preferences

        self.command_table = command_table or CommandTable()
        self.matcher = CommandMatcher(
            self.command_table, EventDeduplicator(window_ms=config.voice.duplicate_window_ms, clock=clock)
        )
        self.predictor = PartialMatchPredictor(self.command_table)
        self.dictation = DictationCoordinator(
            event_bus=event_bus,
            config=config,
            capture_service=capture_service,
            on_smart_stop=self._handle_smart_stop,
            clock=clock,
        )

        self._state: VoiceState = VoiceState.IDLE
        self._hands_free: bool = False
        self._ambient_requested: bool = False
        self._editor_active: bool = False

        self._recognition: Optional[RecognitionSession] = None
        self._live_mode: Optional[ListeningMode] = None
        self._intentional_stop: bool = False
        self._generation: int = 0

        self._resource_lock = asyncio.Lock()
        self._resource_tasks: Set[asyncio.Task] = set()
        self._timers = TimerGroup()
        self._is_shut_down = False

    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def hands_free(self) -> bool:
        return self._hands_free

    @property
    def editor_active(self) -> bool:
        return self._editor_active

    @property
    def live_session(self) -> Optional[RecognitionSession]:
        return self._recognition

    def _context(self) -> TransitionContext:
        return TransitionContext(hands_free=self._hands_free, ambient_requested=self._ambient_requested)

    def bind_handler(self, name: str, handler: Callable[..., Any]) -> None:
        """Bind a direct handler for an app command, called with (argument, transcript)."""
        self.command_table.bind_handler(name, handler)

    def set_editing_context(self, active: bool) -> None:
        """Mark whether a note editor is open, making editor commands eligible in command mode."""
        self._editor_active = active
        logger.debug(f"Editing context {'active' if active else 'inactive'}")

    # Lifecycle

    async def initialize(self) -> bool:
        """Check recognition support, restore hands-free mode and start ambient listening if set.

        Returns:
            False when speech recognition is not available.
        """
        try:
            available = self._recognition_service.is_available()
        except Exception as e:
            logger.error(f"Recognition availability check failed: {e}", exc_info=True)
            available = False

        if not available:
            logger.warning("Speech recognition not available - voice commands disabled")
            await self.event_bus.publish(StatusUpdateEvent(status="disabled", message="Speech not supported"))
            return False

        if self._preferences is not None:
            preferences = await self._preferences.load()
            self._hands_free = preferences.hands_free_mode

        await self.event_bus.publish(StatusUpdateEvent(status="ready", message="Voice commands ready"))
        logger.info(f"Mode controller initialized (hands_free={self._hands_free})")

        if self._hands_free:
            await self._run(HandsFreeChanged(enabled=True))
        return True

    async def shutdown(self) -> None:
        """Stop any session, finalizing dictation, and wait for pending work."""
        if self._is_shut_down:
            return
        self._timers.cancel_all()
        try:
            await self._run(ShutdownRequested())
            await self.settle()
        except Exception as e:
            logger.error(f"Error during mode controller shutdown: {e}", exc_info=True)
        self._is_shut_down = True
        logger.info("Mode controller shutdown complete")

    async def settle(self) -> None:
        """Wait until no session work or timer callback is pending."""
        while True:
            pending = [task for task in self._resource_tasks if not task.done()]
            pending += self._timers.pending_callbacks() + self.dictation.pending_callbacks()
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Public API

    async def start_listening(self, mode: ListeningMode = ListeningMode.DICTATION) -> None:
        """Enter mode, tearing down any other session first. No-op when already in mode."""
        if self._is_shut_down:
            logger.warning(f"start_listening({mode.value}) ignored after shutdown")
            return
        await self._run(StartRequested(mode))

    async def stop_listening(self) -> None:
        """Leave the current mode. Ambient listening stops entirely; active modes return home."""
        await self._run(StopRequested())

    async def set_hands_free(self, enabled: bool, persist: bool = True) -> None:
        """Set hands-free mode and start or stop ambient listening to match.

        Args:
            enabled: New hands-free setting.
            persist: Also store it as the saved preference; False applies it to this run only.
        """
        self._hands_free = enabled
        if persist and self._preferences is not None:
            try:
                await self._preferences.set_hands_free(enabled)
            except Exception as e:
                logger.error(f"Failed to persist hands-free preference: {e}", exc_info=True)
        await self._run(HandsFreeChanged(enabled=enabled))

    async def _run(self, event: object) -> None:
        """Apply a public input and wait for the session work it started."""
        try:
            task = await self._apply(event)
            if task is not None:
                await asyncio.shield(task)
        except Exception as e:
            logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)
            await self._publish_error(f"Voice control error: {e}", "internal", fatal=False)

    # Transition execution

    async def _apply(self, event: object) -> Optional[asyncio.Task]:
        previous = self._state
        result: Transition = transition(previous, event, self._context())

        if result.state != previous:
            self._timers.cancel_all()
            self._state = result.state
            logger.info(f"Voice state: {previous.value} -> {result.state.value} ({type(event).__name__})")

        task = None
        resource_effects = result.resource_effects
        if resource_effects:
            self._generation += 1
            if any(isinstance(effect, StopSession) for effect in resource_effects):
                self._intentional_stop = True
            task = asyncio.create_task(self._run_session_effects(resource_effects, self._generation))
            self._resource_tasks.add(task)
            task.add_done_callback(self._resource_tasks.discard)

        if result.state != previous:
            await self.event_bus.publish(VoiceStateChangedEvent(previous=previous, current=result.state))

        for effect in result.other_effects:
            await self._run_effect(effect)

        return task

    async def _run_effect(self, effect: object) -> None:
        if isinstance(effect, ArmTimer):
            self._arm_timer(effect.timer)
        elif isinstance(effect, EmitStatus):
            await self.event_bus.publish(
                StatusUpdateEvent(status=effect.status, message=effect.message, completions=list(effect.completions))
            )
        elif isinstance(effect, DispatchCommand):
            await self._dispatch_command(effect.match)
        elif isinstance(effect, ForwardInterim):
            await self.event_bus.publish(DictationUpdateEvent(transcript=effect.text))
        elif isinstance(effect, AppendDictation):
            await self.dictation.add_segment(effect.text)
        elif isinstance(effect, NoteSpeechActivity):
            self.dictation.note_activity()
        elif isinstance(effect, ReportError):
            await self._publish_error(effect.message, effect.kind, effect.fatal)
        elif isinstance(effect, SetAmbientRequested):
            self._ambient_requested = effect.value
        else:
            logger.warning(f"Unknown effect {effect!r}")

    def _arm_timer(self, timer: TimerKind) -> None:
        voice = self.config.voice
        if timer == TimerKind.RESET:
            self._timers.arm(timer.value, voice.command_reset_timeout_seconds, lambda: self._apply(ResetTimerExpired()))
        elif timer == TimerKind.RESTART:
            self._timers.arm(timer.value, voice.hands_free_restart_delay_seconds, lambda: self._apply(RestartDue()))
        elif timer == TimerKind.RETRY:
            self._timers.arm(timer.value, voice.permission_retry_backoff_seconds, lambda: self._apply(RestartDue()))

    async def _handle_smart_stop(self, session_id: str) -> None:
        current = self.dictation.session
        if current is None or current.session_id != session_id:
            logger.debug(f"Ignoring Smart Stop for stale dictation session {session_id}")
            return
        await self._apply(SmartStopExpired())

    async def _dispatch_command(self, match: CommandMatch) -> None:
        command = match.command
        logger.info(f"Executing command '{command.name}' (keyword='{match.keyword}', argument={match.argument!r})")

        if command.scope == CommandScope.EDITOR:
            await self.event_bus.publish(
                CommandExecuteEvent(
                    command=CommandPayload.from_command(command), argument=match.argument, transcript=match.transcript
                )
            )
            return

        if command.handler is None:
            await self.event_bus.publish(
                AppCommandEvent(action=command.name, argument=match.argument, transcript=match.transcript)
            )
            return

        try:
            result = command.handler(match.argument, match.transcript)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler for command '{command.name}' failed: {e}", exc_info=True)
            await self._publish_error(f"Command '{command.name}' failed", "internal", fatal=False)

    async def _publish_error(self, message: str, kind: str, fatal: bool = True) -> None:
        await self.event_bus.publish(VoiceErrorEvent(message=message, kind=kind, fatal=fatal))

    # Session work, serialized by _resource_lock

    async def _run_session_effects(self, effects: List[object], generation: int) -> None:
        async with self._resource_lock:
            for effect in effects:
                try:
                    if isinstance(effect, StopSession):
                        await self._stop_live_session(effect.reason)
                    elif isinstance(effect, StartSession):
                        if generation != self._generation:
                            logger.debug(f"Skipping stale start of {effect.mode.value} session (generation {generation})")
                            continue
                        await self._start_session(effect.mode, generation)
                except Exception as e:
                    logger.error(f"Unexpected error in session effect {effect!r}: {e}", exc_info=True)
                    await self._publish_error(f"Voice session error: {e}", "internal")

    async def _start_session(self, mode: ListeningMode, generation: int) -> None:
        try:
            session = self._recognition_service.create_session(
                continuous=True,
                interim_results=mode != ListeningMode.AMBIENT,
                on_result=self._handle_result,
                on_error=self._handle_error,
                on_end=self._handle_end,
            )
            await session.start()
        except Exception as e:
            await self._start_failed(mode, generation, e)
            return

        if generation != self._generation:
            logger.debug(f"Stopping {mode.value} session {session.session_id} that completed after being superseded")
            await self._stop_quietly(session)
            return

        self._recognition = session
        self._live_mode = mode
        self._intentional_stop = False
        logger.info(f"Started {mode.value} recognition session {session.session_id}")

        if mode == ListeningMode.AMBIENT:
            wake = self.config.voice.wake_phrase.title()
            await self.event_bus.publish(StatusUpdateEvent(status="ambient", message=f"Listening for '{wake}'..."))
            return

        if mode == ListeningMode.DICTATION:
            try:
                await self.dictation.begin(session)
            except Exception as e:
                self._recognition = None
                self._live_mode = None
                self._intentional_stop = True
                await self._stop_quietly(session)
                await self._start_failed(mode, generation, e)
                return

        await self.event_bus.publish(ListeningStartedEvent(mode=mode))
        message = "Dictating..." if mode == ListeningMode.DICTATION else "Listening for command..."
        await self.event_bus.publish(StatusUpdateEvent(status="recording", message=message))

    async def _start_failed(self, mode: ListeningMode, generation: int, error: Exception) -> None:
        """Route a failed session start through the state machine; other exceptions count as device failures."""
        if isinstance(error, VoiceServiceError):
            kind, message = error.kind, error.message
        else:
            kind, message = "device", f"Could not start {mode.value} listening: {error}"

        if generation != self._generation:
            logger.debug(f"Discarding failure of stale {mode.value} session: {message}")
            return
        logger.error(
            f"Could not start {mode.value} recognition: {message}", exc_info=not isinstance(error, VoiceServiceError)
        )
        await self._apply(SessionFailed(mode=mode, kind=kind, message=message))

    async def _stop_live_session(self, reason: str) -> None:
        session, mode = self._recognition, self._live_mode
        if session is None:
            return

        self._recognition = None
        self._live_mode = None
        logger.info(f"Stopping {mode.value} recognition session {session.session_id} ({reason})")

        if mode == ListeningMode.DICTATION and self.dictation.owns(session):
            await self.dictation.finish(reason)
            return

        await self._stop_quietly(session)
        if mode == ListeningMode.COMMAND:
            await self.event_bus.publish(ListeningFinishedEvent(mode=mode, reason=reason))

    async def _stop_quietly(self, session: RecognitionSession) -> None:
        try:
            await session.stop()
        except Exception as e:
            logger.error(f"Error stopping recognition session {session.session_id}: {e}", exc_info=True)

    # Recognition callbacks

    def _scopes(self) -> Set[CommandScope]:
        return eligible_scopes(self._state, self._editor_active)

    async def _handle_result(self, session: RecognitionSession, segment: TranscriptSegment) -> None:
        if session is not self._recognition:
            if segment.is_final and self.dictation.is_finalizing(session):
                await self.dictation.add_segment(segment.text)
            else:
                logger.debug(f"Ignoring result from inactive session {session.session_id}: '{segment.text}'")
            return

        text = segment.text.strip()
        if not text or self._live_mode is None or self._state != self._live_mode.state:
            return

        if not segment.is_final:
            if self._state == VoiceState.DICTATION_MODE:
                scopes = self._scopes()
                possibly = self.predictor.could_be_command(text, scopes, dictating=True)
                completions = tuple(self.predictor.possible_completions(text, scopes)) if possibly else ()
                await self._apply(InterimTranscript(text=text, possibly_command=possibly, completions=completions))
            return

        wake_phrase = self.config.voice.wake_phrase
        if self._state == VoiceState.AMBIENT_LISTENING:
            remainder = text_after(text, wake_phrase)
            if remainder is None:
                logger.debug(f"Ambient transcript without wake phrase: '{text}'")
                return
            await self._apply(WakePhraseHeard(transcript=text))
            if remainder:
                await self._route_final(remainder)
            return

        if self._state == VoiceState.COMMAND_MODE:
            remainder = text_after(text, wake_phrase)
            if remainder is not None:
                if not remainder:
                    return
                text = remainder

        await self._route_final(text)

    async def _route_final(self, text: str) -> None:
        dictating = self._state == VoiceState.DICTATION_MODE
        result = self.matcher.match(text, self._scopes(), dictating=dictating)

        if isinstance(result, CommandMatch):
            await self._apply(CommandRecognized(match=result))
        elif isinstance(result, DuplicateMatchResult):
            await self._apply(CommandSuppressed(keyword=result.keyword))
        else:
            await self._apply(TranscriptUnmatched(text=text))

    async def _handle_error(self, session: RecognitionSession, error: RecognitionEngineError) -> None:
        if session is not self._recognition:
            logger.debug(f"Ignoring error from inactive session {session.session_id}: {error.code}")
            return

        if error.is_transient(self.config.voice.transient_error_codes):
            logger.debug(f"Transient recognition error ignored: {error.code}")
            return

        logger.error(f"Recognition error in {self._state.value}: {error.message} (code={error.code})")
        await self._apply(RecognitionFailed(message=error.message, code=error.code, transient=False))

    async def _handle_end(self, session: RecognitionSession) -> None:
        if self._intentional_stop or session is not self._recognition:
            logger.debug(f"Recognition session {session.session_id} ended as requested")
            return

        logger.info(f"Recognition session {session.session_id} ended unexpectedly in {self._state.value}")
        await self._apply(SessionEnded())
