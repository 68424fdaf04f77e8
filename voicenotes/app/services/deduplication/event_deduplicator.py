"""Duplicate suppression for matched voice commands.

Recognizers often finalize the same utterance twice, or the user repeats a command
while the first one is still being handled. A match is suppressed when it carries the
same keyword as the immediately preceding accepted match and arrives within the window.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DeduplicationEntry:
    """The last accepted match."""

    keyword: str
    timestamp: float  # seconds


class EventDeduplicator:
    """Keyword-keyed time window over the last accepted command match.

    The clock is injectable so tests can step time deterministically.

    Attributes:
        window_ms: Suppression window in milliseconds.
        _last_allowed: Last accepted match, None before the first.
        _lock: RLock guarding _last_allowed.
    """

    def __init__(self, window_ms: float = 1500, clock: Optional[Callable[[], float]] = None) -> None:
        """Initialize the deduplicator.

        Args:
            window_ms: Suppression window in milliseconds.
            clock: Returns the current time in seconds, time.monotonic by default.
        """
        self.window_ms = window_ms
        self._clock: Callable[[], float] = clock or time.monotonic
        self._last_allowed: Optional[DeduplicationEntry] = None
        self._lock: threading.RLock = threading.RLock()

        logger.debug(f"EventDeduplicator initialized: window_ms={window_ms}")

    def now(self) -> float:
        return self._clock()

    def age_ms(self, current_time: Optional[float] = None) -> Optional[float]:
        """Milliseconds since the last accepted match, None if there is none."""
        with self._lock:
            if self._last_allowed is None:
                return None
            if current_time is None:
                current_time = self._clock()
            return (current_time - self._last_allowed.timestamp) * 1000

    def should_deduplicate(self, keyword: str, current_time: Optional[float] = None) -> bool:
        """Check whether a match on keyword repeats the last accepted match inside the window.

        Args:
            keyword: Keyword that fired.
            current_time: Current time in seconds, from the clock when None.

        Returns:
            True if the match should be suppressed.
        """
        if current_time is None:
            current_time = self._clock()

        normalized = keyword.lower().strip()
        with self._lock:
            last = self._last_allowed
            if last is None or last.keyword != normalized:
                return False

            age_ms = (current_time - last.timestamp) * 1000
            if age_ms < self.window_ms:
                logger.debug(f"Duplicate keyword '{keyword}' suppressed (age_ms={age_ms:.0f})")
                return True
            return False

    def record_event(self, keyword: str, current_time: Optional[float] = None) -> None:
        """Record an accepted match as the new reference point."""
        if current_time is None:
            current_time = self._clock()

        with self._lock:
            self._last_allowed = DeduplicationEntry(keyword=keyword.lower().strip(), timestamp=current_time)

    def check_and_record(self, keyword: str, current_time: Optional[float] = None) -> bool:
        """Atomically check and, when not a duplicate, record the match.

        Returns:
            True if the match is a duplicate and was not recorded.
        """
        if current_time is None:
            current_time = self._clock()

        with self._lock:
            if self.should_deduplicate(keyword, current_time):
                return True
            self.record_event(keyword, current_time)
            return False
