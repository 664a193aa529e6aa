"""Similarity primitives for comparing snapshot facets.

All functions are pure and return a value in [0.0, 1.0] where 1.0 means identical.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from rapidfuzz.distance import Indel

if TYPE_CHECKING:
    from collections.abc import Iterable

# Longer inputs switch from exact edit distance to windowed sampling
DEFAULT_EXACT_LIMIT = 5_000
DEFAULT_WINDOW_COUNT = 16
DEFAULT_WINDOW_SIZE = 500

_WORD_PATTERN = re.compile(r"\w+")


def exact_character_similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity: 1 - indel_distance / (len(a) + len(b))."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return float(Indel.normalized_similarity(a, b))


def _window_starts(length: int, size: int, count: int) -> list[int]:
    """Start offsets of `count` windows spread evenly from the start to the end."""
    span = max(length - size, 0)
    if count == 1:
        return [0]
    return [round(span * index / (count - 1)) for index in range(count)]


def sampled_character_similarity(
    a: str,
    b: str,
    window_count: int = DEFAULT_WINDOW_COUNT,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> float:
    """Average exact similarity over aligned sample windows.

    Window i starts at the same relative position (i / (count - 1)) in both
    strings, so cost is bounded by window_count * window_size**2 whatever the
    input length.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    size_a = min(window_size, len(a))
    size_b = min(window_size, len(b))
    starts_a = _window_starts(len(a), size_a, window_count)
    starts_b = _window_starts(len(b), size_b, window_count)

    total = 0.0
    for start_a, start_b in zip(starts_a, starts_b, strict=True):
        total += exact_character_similarity(
            a[start_a : start_a + size_a],
            b[start_b : start_b + size_b],
        )
    return total / window_count


def character_similarity(
    a: str | None,
    b: str | None,
    exact_limit: int = DEFAULT_EXACT_LIMIT,
    window_count: int = DEFAULT_WINDOW_COUNT,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> float:
    """Edit-distance similarity, exact for short inputs and sampled for long ones.

    Both empty -> 1.0 (no change). Exactly one empty -> 0.0.
    """
    a = a or ""
    b = b or ""
    if a == b:
        return 1.0
    if max(len(a), len(b)) <= exact_limit:
        return exact_character_similarity(a, b)
    return sampled_character_similarity(a, b, window_count, window_size)


def tokenize_words(text: str | None) -> list[str]:
    """Case-folded runs of word characters, in order of appearance."""
    return _WORD_PATTERN.findall((text or "").casefold())


def jaccard_index(a: Iterable[str], b: Iterable[str]) -> float:
    """|A & B| / |A | B|, with two empty sets counted as identical."""
    set_a = set(a)
    set_b = set(b)
    if not set_a and not set_b:
        return 1.0
    return len(set_a & set_b) / len(set_a | set_b)


def word_similarity(a: str | None, b: str | None) -> float:
    """Jaccard index over the word-token sets of both texts."""
    return jaccard_index(tokenize_words(a), tokenize_words(b))


def link_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index over outbound link targets. Empty hrefs are ignored."""
    return jaccard_index((href for href in a if href), (href for href in b if href))
