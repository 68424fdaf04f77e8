import re
from functools import lru_cache
from typing import List, Optional, Tuple

EDGE_PUNCTUATION = " \t\r\n,.;:!?\"'()[]"

_WORD_SPLIT = re.compile(r"\s+")


@lru_cache(maxsize=1024)
def phrase_pattern(phrase: str) -> "re.Pattern[str]":
    """Case-insensitive whole-word pattern for a phrase.

    Internal whitespace in the phrase matches any run of whitespace.
    """
    words = [re.escape(word) for word in phrase.strip().split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(words) + r"(?!\w)", re.IGNORECASE)


def find_phrase(text: str, phrase: str) -> Optional[Tuple[int, int]]:
    """Span of the first whole-word occurrence of phrase in text, or None."""
    if not phrase.strip():
        return None
    match = phrase_pattern(phrase).search(text)
    return match.span() if match else None


def strip_edges(text: str) -> str:
    """Trim whitespace and edge punctuation."""
    return text.strip(EDGE_PUNCTUATION)


def tokenize(text: str) -> List[str]:
    """Lowercase words with edge punctuation removed, empty tokens dropped."""
    tokens = []
    for raw in _WORD_SPLIT.split(text.lower()):
        token = strip_edges(raw)
        if token:
            tokens.append(token)
    return tokens


def text_after(text: str, phrase: str) -> Optional[str]:
    """Original-case text following the first occurrence of phrase, edge-trimmed.

    Returns None when the phrase does not occur, and an empty string when nothing follows it.
    """
    span = find_phrase(text, phrase)
    if span is None:
        return None
    return strip_edges(text[span[1]:])
