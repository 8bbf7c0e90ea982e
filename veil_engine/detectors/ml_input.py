"""
Input preparation for the ML recognizer.

Validates and normalizes text before it reaches the model, and splits long
documents into sentence-aligned, overlapping chunks that fit the model's
token window. Predictions from the chunks are shifted back to document
offsets and de-duplicated where chunks overlap.
"""

import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from veil_engine.detection_config import ML_MAX_INPUT_LENGTH

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 512
DEFAULT_OVERLAP_TOKENS = 50
CHARS_PER_TOKEN = 4

CONTROL_CHAR_RATIO_WARNING = 0.1
CONTROL_CHAR_COUNT_WARNING = 10

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_REPLACEMENT_CHAR = "\ufffd"

ABBREVIATIONS = (
    "Mr", "Mrs", "Ms", "Dr", "Prof", "Sr", "Jr", "vs", "etc", "e.g", "i.e", "Inc", "Ltd", "Corp", "Co",
)
_ABBREVIATION_END = re.compile(
    r"(?<![\w.])(?:" + "|".join(re.escape(a) for a in ABBREVIATIONS) + r")$"
)
# Terminal punctuation followed by a newline, or by whitespace and a capital
_SENTENCE_BOUNDARY = re.compile(r"[.!?](?:\s*\n\s*|\s+(?=[A-ZÄÖÜÉÈÀÂÊÎÔÛÇ]))")


@dataclass
class MLInputValidation:
    valid: bool
    text: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def validate_ml_input(text, max_length: int = ML_MAX_INPUT_LENGTH) -> MLInputValidation:
    """
    Check text before sending it to the model.

    Whitespace is trimmed and the text NFC-normalized. Empty, None and
    oversized inputs are rejected; replacement characters and heavy
    control-character use only produce warnings.
    """
    if text is None:
        return MLInputValidation(valid=False, error="Input text is None")
    if not isinstance(text, str):
        return MLInputValidation(valid=False, error=f"Input text must be a string, got {type(text).__name__}")

    normalized = text.strip()
    if not normalized:
        return MLInputValidation(valid=False, error="Input text is empty")
    if len(normalized) > max_length:
        return MLInputValidation(
            valid=False,
            error=f"Input text exceeds maximum length of {max_length} characters (got {len(normalized)})",
            warnings=["Split the document with chunk_text before inference"],
        )

    warnings = []
    nfc = unicodedata.normalize("NFC", normalized)
    if nfc != normalized:
        normalized = nfc
        warnings.append("Text encoding was normalized")
    if _REPLACEMENT_CHAR in normalized:
        warnings.append("Invalid UTF-8 sequences were replaced")

    control_count = len(_CONTROL_CHARS.findall(normalized))
    if control_count:
        ratio = control_count / len(normalized)
        if ratio > CONTROL_CHAR_RATIO_WARNING:
            warnings.append(f"High ratio of control characters detected ({control_count} chars, {ratio:.1%})")
        elif control_count > CONTROL_CHAR_COUNT_WARNING:
            warnings.append(f"Control characters detected ({control_count} chars)")

    return MLInputValidation(valid=True, text=normalized, warnings=warnings)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextChunk:
    text: str
    start: int
    end: int
    chunk_index: int


def estimate_token_count(text: str) -> int:
    """Rough subword estimate: about four characters per token, never fewer than words."""
    if not text:
        return 0
    return max(math.ceil(len(text) / CHARS_PER_TOKEN), len(text.split()))


def split_into_sentences(text: str) -> List[Tuple[int, int]]:
    """
    Sentence spans as (start, end) offsets into text.

    Boundaries after common abbreviations ("Dr.", "e.g.") are skipped.
    """
    spans = []
    start = 0
    for match in _SENTENCE_BOUNDARY.finditer(text):
        head = text[start:match.start()]
        if _ABBREVIATION_END.search(head):
            continue
        end = match.start() + 1
        if text[start:end].strip():
            spans.append(_trim(text, start, end))
        start = match.end()
    if text[start:].strip():
        spans.append(_trim(text, start, len(text)))
    return spans


def _trim(text: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _split_oversized(start: int, end: int, max_tokens: int) -> List[Tuple[int, int]]:
    size = max_tokens * CHARS_PER_TOKEN
    return [(s, min(s + size, end)) for s in range(start, end, size)]


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> List[TextChunk]:
    """
    Split text into sentence-aligned chunks that fit max_tokens.

    Each chunk starts with trailing sentences of the previous chunk, up to
    overlap_tokens, so entities near a boundary are seen whole at least once.
    Chunk offsets always refer to the original text.
    """
    if not text:
        return []
    if estimate_token_count(text) <= max_tokens:
        return [TextChunk(text, 0, len(text), 0)]

    sentences: List[Tuple[int, int]] = []
    for start, end in split_into_sentences(text):
        if estimate_token_count(text[start:end]) > max_tokens:
            sentences.extend(_split_oversized(start, end, max_tokens))
        else:
            sentences.append((start, end))

    chunks: List[TextChunk] = []
    current: List[Tuple[int, int]] = []
    current_tokens = 0

    def emit():
        start, end = current[0][0], current[-1][1]
        chunks.append(TextChunk(text[start:end], start, end, len(chunks)))

    for sentence in sentences:
        tokens = estimate_token_count(text[sentence[0]:sentence[1]])
        if current and current_tokens + tokens > max_tokens:
            emit()
            overlap: List[Tuple[int, int]] = []
            overlap_count = 0
            # Carry trailing sentences back, but never the whole previous chunk
            for previous in reversed(current[1:]):
                previous_tokens = estimate_token_count(text[previous[0]:previous[1]])
                if overlap_count + previous_tokens > overlap_tokens:
                    break
                overlap.insert(0, previous)
                overlap_count += previous_tokens
            if overlap_count + tokens > max_tokens:
                overlap, overlap_count = [], 0
            current = overlap
            current_tokens = overlap_count
        current.append(sentence)
        current_tokens += tokens

    if current:
        emit()

    logger.debug(f"Chunked {len(text)} chars into {len(chunks)} chunks")
    return chunks


def _overlap_ratio(a: Dict[str, Any], b: Dict[str, Any]) -> float:
    overlap = min(a["end"], b["end"]) - max(a["start"], b["start"])
    if overlap <= 0:
        return 0.0
    shorter = min(a["end"] - a["start"], b["end"] - b["start"])
    return overlap / shorter if shorter > 0 else 0.0


def merge_chunk_predictions(
    chunk_predictions: Sequence[Tuple[TextChunk, Sequence[Dict[str, Any]]]],
    text: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Combine per-chunk predictions into document-level predictions.

    Offsets are shifted by each chunk's start. Predictions of the same
    entity that overlap by more than half of the shorter one are
    duplicates from the chunk overlap: the higher score is kept and the
    span becomes their union.

    Args:
        chunk_predictions: (chunk, predictions with chunk-relative offsets)
        text: Original text, used to re-slice merged words when given
    """
    shifted = []
    for chunk, predictions in chunk_predictions:
        for prediction in predictions:
            item = dict(prediction)
            item["start"] = prediction["start"] + chunk.start
            item["end"] = prediction["end"] + chunk.start
            shifted.append(item)
    shifted.sort(key=lambda p: (p["start"], p["end"]))

    merged: List[Dict[str, Any]] = []
    for prediction in shifted:
        duplicate = None
        for existing in merged:
            if existing.get("entity") == prediction.get("entity") and _overlap_ratio(existing, prediction) > 0.5:
                duplicate = existing
                break
        if duplicate is None:
            merged.append(prediction)
            continue
        if prediction.get("score", 0.0) > duplicate.get("score", 0.0):
            duplicate["score"] = prediction["score"]
        duplicate["start"] = min(duplicate["start"], prediction["start"])
        duplicate["end"] = max(duplicate["end"], prediction["end"])
        if text is not None:
            duplicate["word"] = text[duplicate["start"]:duplicate["end"]]

    return merged
