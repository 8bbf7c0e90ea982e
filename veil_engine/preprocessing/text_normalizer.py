"""
Text normalization with offset tracking.

This module provides the preprocessing step every detection pass depends on:
- Unicode normalization (fullwidth characters, ligatures, NBSP)
- Zero-width character removal and dash unification
- Whitespace collapsing that preserves newlines
- E-mail and phone de-obfuscation ("hans (at) example (dot) ch")

Every character of the normalized text remembers the span of the original
text it came from, so entity offsets found on normalized text can be mapped
back with ``NormalizationResult.map_span``.
"""

import re
import unicodedata
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from typing import List, Pattern, Tuple


_ZERO_WIDTH = frozenset("\u200b\u200c\u200d\u200e\u200f\u2060\ufeff")
_DASHES = frozenset("\u2010\u2011\u2012\u2013\u2014\u2015")

# Order matters: bracketed forms before bare words
EMAIL_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"\s*[\(\[\{]\s*(?:at|arobase|klammeraffe)\s*[\)\]\}]\s*", re.IGNORECASE), "@"),
    (re.compile(r"(?<=\w)\s*\b(?:arobase|klammeraffe)\b\s*(?=\w)", re.IGNORECASE), "@"),
    (re.compile(r"\s*[\(\[\{]\s*(?:dot|point|punkt)\s*[\)\]\}]\s*", re.IGNORECASE), "."),
]

PHONE_PATTERNS: List[Tuple[Pattern, str]] = [
    # +41 (0)79 ... -> +41 79 ...
    (re.compile(r"(\+\d{1,3})\s*\(0\)\s*"), r"\1 "),
]


@dataclass
class NormalizationResult:
    """Normalized text plus, per output character, its source span in the original."""

    text: str
    original: str
    starts: List[int]
    ends: List[int]

    def map_span(self, start: int, end: int) -> Tuple[int, int]:
        """Map a [start, end) span of normalized text onto the original text."""
        if not self.text:
            return 0, 0
        if end <= start:
            position = self._map_position(start)
            return position, position
        start = max(0, min(start, len(self.text) - 1))
        end = max(start + 1, min(end, len(self.text)))
        return self.starts[start], self.ends[end - 1]

    def _map_position(self, index: int) -> int:
        if index >= len(self.text):
            return len(self.original)
        return self.starts[max(0, index)]

    def map_original_span(self, start: int, end: int) -> Tuple[int, int]:
        """Map a [start, end) span of the original text onto the normalized text."""
        if not self.text:
            return 0, 0
        # Offset lists are non-decreasing, so bisect finds the covering characters
        norm_start = bisect_right(self.ends, start)
        norm_end = bisect_left(self.starts, end)
        norm_start = min(norm_start, len(self.text))
        return norm_start, max(norm_start, norm_end)

    @property
    def changed(self) -> bool:
        return self.text != self.original


class TextNormalizer:
    """
    Normalize text for PII detection.

    Handles common evasion techniques and layout noise:
    - Fullwidth characters (＠ → @, ０ → 0)
    - Zero-width characters that break patterns
    - Inconsistent whitespace
    - Obfuscated e-mail addresses and "(0)" phone trunk prefixes
    """

    def __init__(
        self,
        normalize_unicode: bool = True,
        normalize_whitespace: bool = True,
        handle_emails: bool = True,
        handle_phones: bool = True,
    ):
        self.normalize_unicode = normalize_unicode
        self.normalize_whitespace = normalize_whitespace
        self.handle_emails = handle_emails
        self.handle_phones = handle_phones

    def normalize(self, text: str) -> NormalizationResult:
        """
        Args:
            text: Raw input text

        Returns:
            NormalizationResult with the offset map back to ``text``
        """
        chars: List[str] = []
        starts: List[int] = []
        ends: List[int] = []

        i = 0
        n = len(text)
        while i < n:
            # Base character plus its combining marks form one cluster
            j = i + 1
            while j < n and unicodedata.combining(text[j]):
                j += 1
            cluster = text[i:j]
            if self.normalize_unicode:
                cluster = unicodedata.normalize("NFKC", cluster)

            for ch in cluster:
                if self.normalize_unicode:
                    if ch in _ZERO_WIDTH:
                        continue
                    if ch in _DASHES:
                        ch = "-"
                if self.normalize_whitespace and ch.isspace() and ch != "\n":
                    if chars and chars[-1] == " " and _was_collapsed(text, starts[-1]):
                        ends[-1] = j
                        continue
                    ch = " "
                chars.append(ch)
                starts.append(i)
                ends.append(j)
            i = j

        normalized = "".join(chars)

        if self.handle_emails:
            for pattern, replacement in EMAIL_PATTERNS:
                normalized, starts, ends = _substitute(normalized, starts, ends, pattern, replacement)
        if self.handle_phones:
            for pattern, replacement in PHONE_PATTERNS:
                normalized, starts, ends = _substitute(normalized, starts, ends, pattern, replacement)

        return NormalizationResult(normalized, text, starts, ends)


def _was_collapsed(text: str, index: int) -> bool:
    """The original character at index was whitespace (not a newline)."""
    return text[index].isspace() and text[index] != "\n"


def _substitute(
    text: str,
    starts: List[int],
    ends: List[int],
    pattern: Pattern,
    replacement: str,
) -> Tuple[str, List[int], List[int]]:
    """re.sub that keeps the offset map aligned; replacements map to the whole match."""
    out: List[str] = []
    out_starts: List[int] = []
    out_ends: List[int] = []
    position = 0

    for match in pattern.finditer(text):
        if match.end() == match.start():
            continue
        out.append(text[position:match.start()])
        out_starts.extend(starts[position:match.start()])
        out_ends.extend(ends[position:match.start()])

        replaced = match.expand(replacement)
        span_start = starts[match.start()]
        span_end = ends[match.end() - 1]
        out.append(replaced)
        out_starts.extend([span_start] * len(replaced))
        out_ends.extend([span_end] * len(replaced))
        position = match.end()

    if position == 0:
        return text, starts, ends

    out.append(text[position:])
    out_starts.extend(starts[position:])
    out_ends.extend(ends[position:])
    return "".join(out), out_starts, out_ends


def normalize_text(text: str) -> str:
    """
    Normalize text for PII detection, discarding the offset map.

    Args:
        text: Raw input text

    Returns:
        Normalized text ready for PII detection
    """
    if not text:
        return text
    return TextNormalizer().normalize(text).text
