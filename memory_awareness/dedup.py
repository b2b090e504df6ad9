"""Display-time deduplication of retrieved memories.

Two memories are duplicates when the word-level Jaccard similarity of their
normalized text exceeds a threshold. Cluster memories are never removed.
"""

import re
from typing import Iterable, List

from .client.models import Memory


DEFAULT_SIMILARITY_THRESHOLD = 0.8
DEFAULT_MIN_LENGTH = 20

_BOILERPLATE = [
    re.compile(r"# session summary.*?\n", re.IGNORECASE),
    re.compile(r"\*\*date\*\*:.*?\n", re.IGNORECASE),
    re.compile(r"\*\*project\*\*:.*?\n", re.IGNORECASE),
]
_WHITESPACE = re.compile(r"\s+")


def normalize_content(content: str) -> str:
    """Lowercase, strip summary headers and date/project lines, collapse whitespace."""
    text = (content or "").lower()
    for pattern in _BOILERPLATE:
        text = pattern.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def calculate_content_similarity(first: str, second: str) -> float:
    """Jaccard similarity over words longer than three characters."""
    if not first or not second:
        return 0.0
    if first == second:
        return 1.0
    words_a = {w for w in first.split() if len(w) > 3}
    words_b = {w for w in second.split() if len(w) > 3}
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def is_duplicate_memory(memory: Memory, existing: Iterable[Memory],
                        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                        min_length: int = DEFAULT_MIN_LENGTH) -> bool:
    if memory.is_cluster or not memory.content:
        return False

    normalized = normalize_content(memory.content)
    if len(normalized) < min_length:
        return False

    for other in existing:
        if not other.content:
            continue
        if memory.content_hash and memory.content_hash == other.content_hash:
            return True
        if calculate_content_similarity(normalized, normalize_content(other.content)) > threshold:
            return True
    return False


def filter_new_memories(candidates: List[Memory], collected: List[Memory],
                        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                        min_length: int = DEFAULT_MIN_LENGTH) -> List[Memory]:
    """Return the candidates that duplicate neither `collected` nor an earlier candidate."""
    accepted: List[Memory] = []
    for candidate in candidates:
        if not is_duplicate_memory(candidate, [*collected, *accepted], threshold, min_length):
            accepted.append(candidate)
    return accepted
