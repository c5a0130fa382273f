"""Term tokenizer shared by indexing and index lookups."""

from typing import List

MIN_TERM_LENGTH = 2
MIN_PREFIX_LENGTH = 3
MAX_PREFIX_LENGTH = 8

STOP_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "up", "about", "into", "through", "during", "before", "after", "above",
    "below", "between", "among", "under", "over", "is", "are", "was", "were", "be",
    "been", "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "this", "that", "these",
    "those", "a", "an", "as", "if", "each", "how", "which", "who", "when", "where",
    "why", "what",
})


def is_stop_word(word: str) -> bool:
    return word in STOP_WORDS


def tokenize(text: str) -> List[str]:
    """
    Split text into normalized search terms.

    Every kept word is followed by its prefixes of length 3 up to
    min(len, 8), so prefix lookups work without a trie. The output is
    unordered for matching purposes and keeps duplicates, which weight the
    term frequency table.
    """
    if not text:
        return []

    terms: List[str] = []
    for word in text.lower().split():
        if len(word) < MIN_TERM_LENGTH or is_stop_word(word):
            continue
        terms.append(word)
        if len(word) > MIN_PREFIX_LENGTH:
            for length in range(MIN_PREFIX_LENGTH, min(len(word), MAX_PREFIX_LENGTH) + 1):
                terms.append(word[:length])
    return terms
