"""
Partial Match Predictor

Decides whether an interim dictation fragment might still become a command, so the
fragment can be held back from the live transcript until the recognizer finalizes it.
The authoritative decision is always CommandMatcher's, on the final segment.
"""
import logging
from typing import Dict, List, Set, Tuple

from voicenotes.app.config.command_types import CommandScope
from voicenotes.app.config.voice_command_registry import CommandTable
from voicenotes.app.utils.text_utils import tokenize

logger = logging.getLogger(__name__)


class PartialMatchPredictor:
    """Word-prefix ambiguity check over the keywords of eligible commands.

    A fragment is possibly a command when, over the common length of the two word lists,
    its leading words equal the leading words of some eligible keyword. "add a" is
    possibly "add a task"; "add a task please" still agrees with "add a task" on the
    keyword's three words.
    """

    def __init__(self, table: CommandTable) -> None:
        self._table = table
        # command name -> tokenized keywords, computed once
        self._keyword_tokens: Dict[str, List[Tuple[str, Tuple[str, ...]]]] = {}
        self._analyze_commands()

    def _analyze_commands(self) -> None:
        self._keyword_tokens.clear()
        for command in self._table:
            self._keyword_tokens[command.name] = [(keyword, tuple(tokenize(keyword))) for keyword in command.keywords]

        total = sum(len(entries) for entries in self._keyword_tokens.values())
        logger.debug(f"PartialMatchPredictor initialized: {len(self._keyword_tokens)} commands, {total} keywords")

    @staticmethod
    def _agrees(words: List[str], keyword_words: Tuple[str, ...]) -> bool:
        common = min(len(words), len(keyword_words))
        return common > 0 and tuple(words[:common]) == keyword_words[:common]

    def _iter_keywords(self, scopes: Set[CommandScope], dictating: bool):
        for command in self._table.eligible(scopes, dictating=dictating):
            for keyword, keyword_words in self._keyword_tokens.get(command.name, []):
                yield keyword, keyword_words

    def could_be_command(self, fragment: str, scopes: Set[CommandScope], dictating: bool = True) -> bool:
        """Check whether fragment agrees with the start of any eligible keyword.

        Args:
            fragment: Interim recognition text.
            scopes: Eligible command scopes.
            dictating: Excludes command-mode-only commands.

        Returns:
            True if the fragment should be withheld from the live transcript.
        """
        words = tokenize(fragment)
        if not words:
            return False

        return any(self._agrees(words, keyword_words) for _, keyword_words in self._iter_keywords(scopes, dictating))

    def possible_completions(self, fragment: str, scopes: Set[CommandScope], dictating: bool = True) -> List[str]:
        """Keywords the fragment could still turn into, in registration order."""
        words = tokenize(fragment)
        if not words:
            return []

        completions = []
        for keyword, keyword_words in self._iter_keywords(scopes, dictating):
            if self._agrees(words, keyword_words) and keyword not in completions:
                completions.append(keyword)
        return completions
