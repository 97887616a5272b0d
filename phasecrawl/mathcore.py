"""Bounded arithmetic shared by every component.

All functions are pure. They return tagged results or fallbacks and never
raise, except ``clamp`` on an inverted range.
"""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Dict, Iterable, Optional

from .errors import InvalidRange

EPSILON = 1e-10

FLESCH_BASE = 206.835
FLESCH_SENTENCE_FACTOR = 1.015
FLESCH_SYLLABLE_FACTOR = 84.6
MIN_WORDS_FOR_READABILITY = 5
MIN_SENTENCES_FOR_READABILITY = 1

QUALITY_SCORE_MIN = 0
QUALITY_SCORE_MAX = 100
READABILITY_SCORE_MIN = -100
READABILITY_SCORE_MAX = 200

BYTES_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB"]
BYTES_BASE = 1024

_VOWELS = "aeiouy"
_SPECIAL_ENDINGS = re.compile(r"(ia|ious|eous)$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ───────── arithmetic ─────────

def safe_divide(numerator: Any, denominator: Any, fallback: Any = None) -> Any:
    """Return ``numerator / denominator`` or ``fallback`` when undefined."""
    if not _is_number(numerator) or not _is_number(denominator):
        return fallback
    if not math.isfinite(numerator) or not math.isfinite(denominator):
        return fallback
    if abs(denominator) <= EPSILON:
        return fallback
    return numerator / denominator


def clamp(value: Any, lo: float, hi: float) -> float:
    """Bound ``value`` to ``[lo, hi]``. NaN and non-numbers map to ``lo``."""
    if lo > hi:
        raise InvalidRange(f"Invalid clamp range: min({lo}) > max({hi})")
    if not _is_number(value) or math.isnan(value):
        return lo
    if value == math.inf:
        return hi
    if value == -math.inf:
        return lo
    return max(lo, min(hi, value))


def safe_compare(a: float, b: float, epsilon: float = EPSILON) -> int:
    diff = a - b
    if abs(diff) <= epsilon:
        return 0
    return -1 if diff < 0 else 1


def exceeds_threshold(value: float, threshold: float) -> bool:
    return (value - threshold) > EPSILON


def rate_limit_wait(interval: float, elapsed: float, min_wait: float = 100) -> float:
    """Milliseconds to wait before the oldest slot in a window frees up."""
    return max(min_wait, interval - elapsed, 0)


# ───────── text statistics ─────────

def flesch_score(words: int, sentences: int, syllables: int) -> Dict[str, Any]:
    """Flesch reading ease as a tagged ``{valid, value, reason}`` result."""
    if not _is_number(words) or words < MIN_WORDS_FOR_READABILITY:
        return {
            "valid": False,
            "value": None,
            "reason": f"Insufficient words: {words} < {MIN_WORDS_FOR_READABILITY}",
        }
    if not _is_number(sentences) or sentences < MIN_SENTENCES_FOR_READABILITY:
        return {
            "valid": False,
            "value": None,
            "reason": f"Insufficient sentences: {sentences} < {MIN_SENTENCES_FOR_READABILITY}",
        }

    avg_sentence_length = safe_divide(words, sentences, 0)
    avg_syllables_per_word = safe_divide(syllables, words, 1)
    raw = (
        FLESCH_BASE
        - FLESCH_SENTENCE_FACTOR * avg_sentence_length
        - FLESCH_SYLLABLE_FACTOR * avg_syllables_per_word
    )
    return {"valid": True, "value": _round_half_up(clamp(raw, 0, 100)), "reason": None}


def count_syllables(word: Any) -> int:
    """Heuristic syllable count. Non-strings count as one syllable."""
    if not isinstance(word, str):
        return 1

    clean = re.sub(r"[^a-z]", "", word.lower())
    if not clean:
        return 0
    if len(clean) <= 3:
        return 1

    count = 0
    prev_vowel = False
    for char in clean:
        is_vowel = char in _VOWELS
        if is_vowel and not prev_vowel:
            count += 1
        prev_vowel = is_vowel

    # terminal "e" is silent except in a consonant + "le" ending
    if clean.endswith("e") and not clean.endswith("le"):
        count = max(1, count - 1)

    if _SPECIAL_ENDINGS.search(clean):
        count += 1

    return max(1, count)


def count_total_syllables(words: Any) -> int:
    if not isinstance(words, (list, tuple)):
        return 0
    return sum(count_syllables(w) for w in words)


def text_density(text_len: Any, html_len: Any) -> Optional[float]:
    if not _is_number(text_len) or not _is_number(html_len):
        return None
    if text_len < 0 or html_len < 0:
        return None
    if html_len == 0:
        return 0 if text_len == 0 else None
    return text_len / html_len


def quality_score(metrics: Dict[str, Any], base: float = 50) -> float:
    """Content quality in ``[0, 100]`` from word, paragraph and sentence stats."""
    score = base
    word_count = metrics.get("wordCount", 0) or 0
    paragraph_count = metrics.get("paragraphCount", 0) or 0
    avg_words = metrics.get("avgWordsPerSentence", 0) or 0

    if word_count > 300:
        score += 10
    if word_count > 700:
        score += 10
    if word_count > 1500:
        score += 5

    if paragraph_count >= 3:
        score += 10
    if paragraph_count >= 7:
        score += 5

    if 10 <= avg_words <= 25:
        score += 10

    return clamp(score, QUALITY_SCORE_MIN, QUALITY_SCORE_MAX)


def reading_time(words: Any, wpm: float = 200) -> Optional[int]:
    """Minutes to read ``words`` at ``wpm``, rounded up."""
    if not _is_number(words) or words < 0:
        return None
    if words == 0 or not _is_number(wpm) or wpm <= 0:
        return None
    return math.ceil(words / wpm)


def readability_score(params: Dict[str, float]) -> float:
    """Aggregate container score used for main-content detection."""
    def g(key: str) -> float:
        return params.get(key, 0) or 0

    positive = (
        g("tagWeight")
        + min(g("classBonus"), 25)
        + min(g("idBonus"), 25)
        + min(g("roleBonus"), 30)
        + min(g("wordCountBonus"), 50)
        + min(g("punctuationBonus"), 20)
        + min(g("paragraphBonus"), 30)
        + min(g("densityBonus"), 30)
    )
    negative = (
        min(g("classPenalty"), 50)
        + min(g("idPenalty"), 50)
        + min(g("rolePenalty"), 50)
    )
    return clamp(positive - negative, READABILITY_SCORE_MIN, READABILITY_SCORE_MAX)


# ───────── formatting & identifiers ─────────

def format_bytes(n: Any) -> Optional[str]:
    """Human readable size, e.g. ``1.5 KB``. ``None`` for invalid input."""
    if not _is_number(n) or not math.isfinite(n) or n < 0:
        return None
    if n == 0:
        return "0 Bytes"

    i = max(0, min(int(math.floor(math.log(n) / math.log(BYTES_BASE))), len(BYTES_UNITS) - 1))
    value = n / math.pow(BYTES_BASE, i)

    if value >= 100:
        formatted = f"{value:.0f}"
    elif value >= 10:
        formatted = f"{value:.1f}"
    else:
        formatted = f"{value:.2f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")

    return f"{formatted} {BYTES_UNITS[i]}"


def success_rate(successful: Any, total: Any) -> Dict[str, Any]:
    """``{rate, percentage}`` with the percentage truncated to one decimal."""
    if not _is_number(successful) or not _is_number(total) or total <= 0 or successful < 0:
        return {"rate": 0, "percentage": "0.0"}

    rate = clamp(successful / total, 0, 1)
    percentage = math.floor(rate * 1000) / 10
    return {"rate": rate, "percentage": f"{percentage:.1f}"}


def hash_suffix(value: str, length: int = 16) -> str:
    """Lowercase sha256 hex prefix, length bounded to ``[8, 64]``."""
    size = int(clamp(length, 8, 64))
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:size]


def mean(values: Iterable[float]) -> Optional[float]:
    """Average via safe division; ``None`` for an empty sequence."""
    values = list(values)
    return safe_divide(sum(values), len(values), None)
