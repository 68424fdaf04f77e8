import logging
from typing import Optional, Set, Union

from voicenotes.app.config.command_types import CommandMatch, CommandScope, DuplicateMatchResult, NoMatchResult
from voicenotes.app.config.voice_command_registry import CommandTable
from voicenotes.app.config.voice_types import VoiceState
from voicenotes.app.services.deduplication.event_deduplicator import EventDeduplicator
from voicenotes.app.utils.text_utils import phrase_pattern, strip_edges

logger = logging.getLogger(__name__)

MatchResultType = Union[CommandMatch, NoMatchResult, DuplicateMatchResult]


def eligible_scopes(state: VoiceState, editor_active: bool) -> Set[CommandScope]:
    """Command scopes that may fire in a state.

    APP is always eligible while listening for commands. EDITOR is eligible during
    dictation, and in command mode only while an editor is open.
    """
    if state == VoiceState.DICTATION_MODE:
        return {CommandScope.APP, CommandScope.EDITOR}
    if state == VoiceState.COMMAND_MODE:
        return {CommandScope.APP, CommandScope.EDITOR} if editor_active else {CommandScope.APP}
    return set()


class CommandMatcher:
    """Maps a finalized transcript to at most one command.

    Commands are scanned in registration order and each command's keywords in order.
    A keyword matches as a case-insensitive whole-word substring. Commands that require
    an argument only fire when non-empty text follows the keyword; the first hit wins.
    Accepted matches pass through a keyword-keyed duplicate window.

    Args:
        table: Command table to scan.
        deduplicator: Duplicate window; a fresh 1500 ms window when omitted.
    """

    def __init__(self, table: CommandTable, deduplicator: Optional[EventDeduplicator] = None) -> None:
        self._table = table
        self._deduplicator = deduplicator or EventDeduplicator()

    @property
    def table(self) -> CommandTable:
        return self._table

    @property
    def deduplicator(self) -> EventDeduplicator:
        return self._deduplicator

    def find(self, transcript: str, scopes: Set[CommandScope], dictating: bool = False) -> Union[CommandMatch, NoMatchResult]:
        """Scan for the first eligible match without touching the duplicate window.

        Args:
            transcript: Finalized text, original case.
            scopes: Eligible scopes.
            dictating: Excludes command-mode-only commands.

        Returns:
            CommandMatch or NoMatchResult.
        """
        if not transcript or not transcript.strip() or not scopes:
            return NoMatchResult()

        for command in self._table.eligible(scopes, dictating=dictating):
            for keyword in command.keywords:
                found = phrase_pattern(keyword).search(transcript)
                if found is None:
                    continue

                argument = strip_edges(transcript[found.end():])
                if command.requires_argument and not argument:
                    continue

                return CommandMatch(command=command, keyword=keyword, argument=argument or None, transcript=transcript)

        return NoMatchResult()

    def match(
        self,
        transcript: str,
        scopes: Set[CommandScope],
        dictating: bool = False,
        current_time: Optional[float] = None,
    ) -> MatchResultType:
        """Find a match and apply duplicate suppression.

        Args:
            transcript: Finalized text, original case.
            scopes: Eligible scopes.
            dictating: Excludes command-mode-only commands.
            current_time: Seconds on the deduplicator clock, read from it when None.

        Returns:
            CommandMatch for an accepted match, DuplicateMatchResult when suppressed,
            NoMatchResult otherwise.
        """
        result = self.find(transcript, scopes, dictating=dictating)
        if not isinstance(result, CommandMatch):
            return result

        if current_time is None:
            current_time = self._deduplicator.now()

        if self._deduplicator.check_and_record(result.keyword, current_time):
            age_ms = self._deduplicator.age_ms(current_time) or 0.0
            logger.debug(f"Suppressed duplicate '{result.keyword}' from transcript '{transcript}'")
            return DuplicateMatchResult(keyword=result.keyword, age_ms=age_ms)

        logger.debug(f"Matched command '{result.command.name}' on keyword '{result.keyword}' (argument={result.argument!r})")
        return result
