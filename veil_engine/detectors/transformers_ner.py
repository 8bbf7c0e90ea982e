"""
Transformer-based NER at the ML boundary.

``TransformersTokenClassifier`` wraps a Hugging Face token-classification
pipeline. The model is loaded on first use (the ``ml`` extra must be
installed) and inference runs in a worker thread so the event loop stays
free.

``MLRecognizer`` turns any async token classifier into engine entities:
input validation, retry with backoff, subword merging and label mapping.
Failures come back as a status, never as an exception, so detection can
degrade to rule-only.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from veil_engine.detection_config import ML_CONFIDENCE_THRESHOLD
from veil_engine.detectors.ml_input import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_OVERLAP_TOKENS,
    chunk_text,
    merge_chunk_predictions,
    validate_ml_input,
)
from veil_engine.detectors.ml_merger import merge_subword_tokens
from veil_engine.detectors.ml_retry import Err, RetryConfig, with_retry
from veil_engine.types import ML, Entity

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "Davlan/bert-base-multilingual-cased-ner-hrl"

# Model label -> engine entity type; unmapped labels (MISC) are ignored
LABEL_MAP = {
    "PER": "PERSON_NAME",
    "PERSON": "PERSON_NAME",
    "ORG": "ORGANIZATION",
    "LOC": "LOCATION",
}

ML_OK = "ok"
ML_DEGRADED = "degraded"
ML_DISABLED = "disabled"
ML_SKIPPED = "skipped"

TokenClassifier = Callable[[str], Awaitable[List[Dict[str, Any]]]]


def map_ml_label(label: str) -> Optional[str]:
    return LABEL_MAP.get(label.upper())


class TransformersTokenClassifier:
    """
    Lazy Hugging Face token-classification pipeline.

    Returns raw BIO tokens (aggregation "none"); merging happens in
    merge_subword_tokens so offsets stay exact.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        device: int = -1,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    ):
        self.model_name = model_name
        self.device = device
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self._pipeline = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._pipeline is not None

    def _load(self):
        with self._lock:
            if self._pipeline is None:
                from transformers import pipeline

                logger.info(f"Loading token-classification model {self.model_name}")
                self._pipeline = pipeline(
                    "token-classification",
                    model=self.model_name,
                    aggregation_strategy="none",
                    device=self.device,
                )
        return self._pipeline

    def predict(self, text: str) -> List[Dict[str, Any]]:
        """Blocking inference over sentence-aligned chunks."""
        classifier = self._load()
        chunk_predictions = []
        for chunk in chunk_text(text, self.max_tokens, self.overlap_tokens):
            tokens = [
                {
                    "word": token["word"],
                    "entity": token["entity"],
                    "score": float(token["score"]),
                    "start": int(token["start"]),
                    "end": int(token["end"]),
                }
                for token in classifier(chunk.text)
                if token.get("start") is not None
            ]
            chunk_predictions.append((chunk, tokens))
        return merge_chunk_predictions(chunk_predictions, text)

    async def __call__(self, text: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.predict, text)


@dataclass
class MLRecognition:
    entities: List[Entity] = field(default_factory=list)
    status: str = ML_OK
    attempts: int = 0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


class MLRecognizer:
    """
    Adapter from an async token classifier to engine entities.

    Args:
        classifier: Any ``async (text) -> list[dict]`` returning BIO tokens
        retry_config: Backoff settings for transient failures
        min_confidence: Merged entities below this score are dropped
    """

    name = "MLRecognizer"

    def __init__(
        self,
        classifier: TokenClassifier,
        retry_config: Optional[RetryConfig] = None,
        min_confidence: float = ML_CONFIDENCE_THRESHOLD,
        min_length: int = 2,
    ):
        self.classifier = classifier
        self.retry_config = retry_config or RetryConfig()
        self.min_confidence = min_confidence
        self.min_length = min_length

    async def recognize(self, text: str) -> MLRecognition:
        validation = validate_ml_input(text)
        if not validation.valid:
            logger.warning(f"ML input rejected: {validation.error}")
            return MLRecognition(status=ML_SKIPPED, error=validation.error, warnings=validation.warnings)

        # Inference runs on the stripped text; offsets shift back by the trimmed prefix
        offset = len(text) - len(text.lstrip())
        model_text = text.strip()
        if validation.text != model_text:
            logger.debug("ML input was re-normalized; using the pipeline text for inference")

        outcome = await with_retry(lambda: self.classifier(model_text), self.retry_config, label=self.name)
        if isinstance(outcome.result, Err):
            return MLRecognition(
                status=ML_DEGRADED,
                attempts=outcome.attempts,
                warnings=validation.warnings,
                error=outcome.result.reason,
            )

        entities = []
        for merged in merge_subword_tokens(outcome.result.value, model_text, min_length=self.min_length):
            entity_type = map_ml_label(merged["entity"])
            if entity_type is None or merged["score"] < self.min_confidence:
                continue
            start = merged["start"] + offset
            end = merged["end"] + offset
            entities.append(Entity(
                text=text[start:end],
                entity_type=entity_type,
                start=start,
                end=end,
                confidence=merged["score"],
                source=ML,
                recognizer=self.name,
                metadata={"ml_label": merged["entity"], "token_count": merged["token_count"]},
            ))

        logger.debug(f"ML produced {len(entities)} entities in {outcome.attempts} attempt(s)")
        return MLRecognition(
            entities=entities,
            status=ML_OK,
            attempts=outcome.attempts,
            warnings=validation.warnings,
        )
