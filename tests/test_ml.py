"""Tests for ML token merging, input preparation, retry and the ML recognizer."""

import asyncio

import pytest

from tests.conftest import FakeTokenClassifier
from veil_engine.detectors.ml_input import (
    TextChunk,
    chunk_text,
    estimate_token_count,
    merge_chunk_predictions,
    split_into_sentences,
    validate_ml_input,
)
from veil_engine.detectors.ml_merger import extract_entity_type, merge_subword_tokens
from veil_engine.detectors.ml_retry import Err, Ok, RetryConfig, classify_error, with_retry
from veil_engine.detectors.transformers_ner import (
    ML_DEGRADED,
    ML_OK,
    ML_SKIPPED,
    MLRecognizer,
    map_ml_label,
)
from veil_engine.types import ML

NO_DELAY = RetryConfig(initial_delay=0)


# ── BIO labels ───────────────────────────────────────────────────────

@pytest.mark.parametrize("label, expected", [
    ("B-PER", ("B", "PER")),
    ("I-ORG", ("I", "ORG")),
    ("S-LOC", ("B", "LOC")),
    ("E-PER", ("I", "PER")),
    ("PER", ("B", "PER")),
    ("O", (None, "O")),
    ("", (None, "O")),
])
def test_extract_entity_type(label, expected):
    assert extract_entity_type(label) == expected


def test_map_ml_label():
    assert map_ml_label("PER") == "PERSON_NAME"
    assert map_ml_label("org") == "ORGANIZATION"
    assert map_ml_label("MISC") is None


# ── Subword merging ──────────────────────────────────────────────────

HANS = [
    {"word": "Hans", "entity": "B-PER", "score": 0.95, "start": 0, "end": 4},
    {"word": "Müller", "entity": "I-PER", "score": 0.92, "start": 5, "end": 11},
]


def test_merge_person_tokens():
    merged = merge_subword_tokens(HANS, "Hans Müller wohnt in Bern")
    assert len(merged) == 1
    entity = merged[0]
    assert entity["word"] == "Hans Müller"
    assert entity["entity"] == "PER"
    assert entity["score"] == pytest.approx(0.935)
    assert (entity["start"], entity["end"]) == (0, 11)
    assert entity["token_count"] == 2


def test_merge_reads_tag_field():
    tokens = [
        {"word": "Anna", "tag": "B-PER", "score": 0.9, "start": 0, "end": 4},
        {"word": "Keller", "tag": "I-PER", "score": 0.8, "start": 5, "end": 11},
        {"word": "wohnt", "tag": "O", "score": 0.99, "start": 12, "end": 17},
    ]
    merged = merge_subword_tokens(tokens, "Anna Keller wohnt hier")
    assert len(merged) == 1
    assert merged[0]["word"] == "Anna Keller"
    assert merged[0]["entity"] == "PER"


def test_merge_subword_pieces():
    tokens = [
        {"word": "Mü", "entity": "B-PER", "score": 0.9, "start": 5, "end": 7},
        {"word": "##ller", "entity": "I-PER", "score": 0.8, "start": 7, "end": 11},
    ]
    merged = merge_subword_tokens(tokens, "Herr Müller")
    assert merged[0]["word"] == "Müller"


def test_merge_is_idempotent():
    text = "Hans Müller wohnt in Bern"
    once = merge_subword_tokens(HANS, text)
    twice = merge_subword_tokens(once, text)
    assert [(e["word"], e["entity"], e["start"], e["end"]) for e in twice] == \
        [(e["word"], e["entity"], e["start"], e["end"]) for e in once]
    assert twice[0]["score"] == pytest.approx(once[0]["score"])


def test_large_gap_breaks_entity():
    text = "Hans          Müller"
    tokens = [
        {"entity": "B-PER", "score": 0.9, "start": 0, "end": 4},
        {"entity": "I-PER", "score": 0.9, "start": 14, "end": 20},
    ]
    merged = merge_subword_tokens(tokens, text)
    assert [e["word"] for e in merged] == ["Hans", "Müller"]


def test_type_change_breaks_entity():
    tokens = [
        {"entity": "B-PER", "score": 0.9, "start": 0, "end": 4},
        {"entity": "I-ORG", "score": 0.9, "start": 5, "end": 8},
    ]
    merged = merge_subword_tokens(tokens, "Hans UBS")
    assert [e["entity"] for e in merged] == ["PER", "ORG"]


def test_short_entities_dropped():
    tokens = [{"entity": "B-PER", "score": 0.9, "start": 0, "end": 1}]
    assert merge_subword_tokens(tokens, "A b") == []


def test_weighted_score_favours_first_token():
    merged = merge_subword_tokens(HANS, "Hans Müller", weighted=True)
    assert merged[0]["score"] == pytest.approx((0.95 + 0.92 / 2) / 1.5)


def test_outside_tokens_close_entity():
    tokens = [
        {"entity": "B-PER", "score": 0.9, "start": 0, "end": 4},
        {"entity": "O", "score": 0.9, "start": 5, "end": 8},
        {"entity": "I-PER", "score": 0.9, "start": 9, "end": 14},
    ]
    merged = merge_subword_tokens(tokens, "Hans und Meier")
    assert [e["word"] for e in merged] == ["Hans", "Meier"]


# ── Input validation ─────────────────────────────────────────────────

def test_validate_rejects_missing_and_empty():
    assert validate_ml_input(None).error == "Input text is None"
    assert validate_ml_input("   ").error == "Input text is empty"
    assert not validate_ml_input(42).valid


def test_validate_rejects_oversized():
    result = validate_ml_input("abcdefgh", max_length=5)
    assert not result.valid
    assert "maximum length" in result.error


def test_validate_trims_and_normalizes():
    result = validate_ml_input("  Cafe\u0301 Central  ")
    assert result.valid
    assert result.text == "Caf\u00e9 Central"
    assert "Text encoding was normalized" in result.warnings


def test_validate_warns_on_replacement_characters():
    result = validate_ml_input("Hans M\ufffdller")
    assert result.valid
    assert "Invalid UTF-8 sequences were replaced" in result.warnings


# ── Chunking ─────────────────────────────────────────────────────────

SENTENCE = "Hans Muster lives in Bern today. "


def test_short_text_is_one_chunk():
    assert chunk_text("Hans Muster") == [TextChunk("Hans Muster", 0, 11, 0)]
    assert chunk_text("") == []


def test_chunks_fit_and_overlap():
    text = SENTENCE * 10
    chunks = chunk_text(text, max_tokens=20, overlap_tokens=10)
    assert len(chunks) > 1
    for chunk in chunks:
        assert text[chunk.start:chunk.end] == chunk.text
        assert estimate_token_count(chunk.text) <= 20
    assert chunks[1].start < chunks[0].end
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert chunks[-1].end == len(text.rstrip())


def test_sentence_split_skips_abbreviations():
    text = "Dr. Meier kommt. Er bleibt."
    spans = split_into_sentences(text)
    assert [text[s:e] for s, e in spans] == ["Dr. Meier kommt.", "Er bleibt."]


def test_merge_chunk_predictions_deduplicates_overlap():
    text = "x" * 30
    first = TextChunk(text[0:20], 0, 20, 0)
    second = TextChunk(text[10:30], 10, 30, 1)
    merged = merge_chunk_predictions([
        (first, [{"entity": "PER", "start": 12, "end": 17, "score": 0.8}]),
        (second, [{"entity": "PER", "start": 2, "end": 7, "score": 0.9}]),
    ], text)
    assert len(merged) == 1
    assert (merged[0]["start"], merged[0]["end"]) == (12, 17)
    assert merged[0]["score"] == 0.9


def test_merge_chunk_predictions_keeps_distinct_types():
    chunk = TextChunk("abcdefgh", 0, 8, 0)
    merged = merge_chunk_predictions([(chunk, [
        {"entity": "PER", "start": 0, "end": 4, "score": 0.8},
        {"entity": "ORG", "start": 0, "end": 4, "score": 0.7},
    ])])
    assert len(merged) == 2


# ── Retry ────────────────────────────────────────────────────────────

def test_classify_error():
    assert classify_error(TimeoutError("slow"))
    assert classify_error(RuntimeError("model loading"))
    assert classify_error(RuntimeError("HTTP 503 Service Unavailable"))
    assert not classify_error(RuntimeError("404 connection"))
    assert not classify_error(ValueError("invalid input"))
    assert not classify_error(KeyError("something odd"))


def test_delay_for():
    config = RetryConfig(initial_delay=0.1, max_delay=0.5, multiplier=2.0)
    assert config.delay_for(1) == pytest.approx(0.1)
    assert config.delay_for(2) == pytest.approx(0.2)
    assert config.delay_for(5) == pytest.approx(0.5)
    assert RetryConfig(initial_delay=0.3, exponential_backoff=False).delay_for(4) == pytest.approx(0.3)


async def test_retry_succeeds_after_transient_failure():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TimeoutError("timed out")
        return "done"

    outcome = await with_retry(flaky, NO_DELAY)
    assert outcome.result == Ok("done")
    assert outcome.attempts == 3


async def test_retry_stops_on_fatal_error():
    async def broken():
        raise ValueError("model not found")

    outcome = await with_retry(broken, NO_DELAY)
    assert isinstance(outcome.result, Err)
    assert not outcome.result.retryable
    assert outcome.attempts == 1


async def test_retry_gives_up_after_max_retries():
    async def always_slow():
        raise TimeoutError("timeout")

    outcome = await with_retry(always_slow, RetryConfig(max_retries=2, initial_delay=0))
    assert isinstance(outcome.result, Err)
    assert outcome.result.retryable
    assert outcome.attempts == 3


async def test_retry_propagates_cancellation():
    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await with_retry(cancelled, NO_DELAY)


# ── ML recognizer ────────────────────────────────────────────────────

async def test_recognizer_maps_entities_to_original_offsets():
    text = "  Sehr geehrter Hans Müller"
    recognition = await MLRecognizer(FakeTokenClassifier(), NO_DELAY).recognize(text)
    assert recognition.status == ML_OK
    assert len(recognition.entities) == 1
    entity = recognition.entities[0]
    assert entity.text == "Hans Müller"
    assert text[entity.start:entity.end] == "Hans Müller"
    assert entity.entity_type == "PERSON_NAME"
    assert entity.source == ML
    assert entity.confidence == pytest.approx(0.9)
    assert entity.metadata == {"ml_label": "PER", "token_count": 2}


async def test_recognizer_drops_low_scores():
    recognition = await MLRecognizer(FakeTokenClassifier(score=0.1), NO_DELAY).recognize("Hans Müller")
    assert recognition.status == ML_OK
    assert recognition.entities == []


async def test_recognizer_retries_transient_failures():
    classifier = FakeTokenClassifier(fail_times=2)
    recognition = await MLRecognizer(classifier, NO_DELAY).recognize("Hans Müller")
    assert recognition.status == ML_OK
    assert recognition.attempts == 3
    assert len(recognition.entities) == 1


async def test_recognizer_degrades_when_retries_run_out():
    classifier = FakeTokenClassifier(fail_times=10)
    recognition = await MLRecognizer(classifier, RetryConfig(max_retries=2, initial_delay=0)).recognize("Hans Müller")
    assert recognition.status == ML_DEGRADED
    assert recognition.entities == []
    assert recognition.attempts == 3
    assert "TimeoutError" in recognition.error


async def test_recognizer_degrades_on_fatal_error():
    classifier = FakeTokenClassifier(fail_times=1, error=RuntimeError("out of memory"))
    recognition = await MLRecognizer(classifier, NO_DELAY).recognize("Hans Müller")
    assert recognition.status == ML_DEGRADED
    assert classifier.calls == 1


async def test_recognizer_skips_empty_input():
    classifier = FakeTokenClassifier()
    recognition = await MLRecognizer(classifier, NO_DELAY).recognize("   ")
    assert recognition.status == ML_SKIPPED
    assert classifier.calls == 0
