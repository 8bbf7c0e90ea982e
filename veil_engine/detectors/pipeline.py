"""
Detection pipeline orchestrator.

Builds the shared, read-only detection resources once (recognizer
registry, deny-list, validators, context tables) and runs the ordered
passes over a fresh PipelineContext per document:

    pipeline = DetectionPipeline()
    result = await pipeline.detect("IBAN: CH93 0076 2011 6238 5295 7")
    for entity in result.entities:
        print(entity.entity_type, entity.start, entity.end, entity.confidence)

A failing pass is logged and skipped; only a normalization failure aborts
the run (PipelineError). Invalid input is reported on the result, never
raised.
"""

import asyncio
import inspect
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from veil_engine.data.context_words import ContextWord
from veil_engine.detection_config import (
    MAX_INPUT_LENGTH,
    REVIEW_THRESHOLD,
    SUPPORTED_LANGUAGES,
    DetectionConfig,
    get_config,
)
from veil_engine.detectors.consolidation import Consolidator
from veil_engine.detectors.context_enhancer import ColumnHint, ContextEnhancer, RegionHint
from veil_engine.detectors.ml_retry import RetryConfig
from veil_engine.detectors.passes import (
    AddressRelationshipPass,
    ConsolidationPass,
    ContextScoringPass,
    DenyListFilterPass,
    DetectionPass,
    DocumentTypePass,
    FormatValidationPass,
    NormalizePass,
    PipelineContext,
    RecognizePass,
    entity_counts,
)
from veil_engine.detectors.recognizer_registry import (
    RecognizerRegistry,
    RegistryConfig,
    create_default_registry,
)
from veil_engine.detectors.transformers_ner import (
    ML_DEGRADED,
    ML_DISABLED,
    MLRecognizer,
    TokenClassifier,
    TransformersTokenClassifier,
)
from veil_engine.preprocessing.text_normalizer import NormalizationResult, TextNormalizer
from veil_engine.types import MANUAL, Entity, InputError, PipelineError

logger = logging.getLogger(__name__)

OK = "ok"
FAILED = "failed"
SKIPPED = "skipped"
DISABLED = "disabled"


@dataclass
class DetectionOptions:
    """
    Per-call options.

    Offsets in hints and manual entities refer to the text passed to detect().
    """

    language: Optional[str] = None
    document_type_hint: Optional[str] = None
    extra_context_words: Sequence[Union[str, ContextWord]] = ()
    column_hints: Sequence[ColumnHint] = ()
    region_hints: Sequence[RegionHint] = ()
    enhancements_enabled: bool = True
    document_id: Optional[str] = None
    manual_entities: Sequence[Entity] = ()


@dataclass
class PassResult:
    name: str
    added: int = 0
    removed: int = 0
    duration_ms: float = 0.0
    status: str = OK
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "added": self.added,
            "removed": self.removed,
            "duration_ms": round(self.duration_ms, 3),
            "status": self.status,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DetectionResult:
    entities: List[Entity] = field(default_factory=list)
    text: Optional[str] = None
    language: Optional[str] = None
    document_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[InputError] = None
    # Set when the run itself did not complete (cancelled, normalization failure)
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.failure is None

    @property
    def flagged(self) -> List[Entity]:
        return [e for e in self.entities if e.metadata.get("flagged_for_review")]

    @property
    def selected(self) -> List[Entity]:
        return [e for e in self.entities if e.metadata.get("selected")]

    @property
    def applied_passes(self) -> List[str]:
        """Names of the passes that ran to completion, in order."""
        return [r["name"] for r in self.metadata.get("pass_results", []) if r.get("status") == OK]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "language": self.language,
            "document_type": self.document_type,
            "metadata": self.metadata,
            "error": {"code": self.error.code, "message": self.error.message} if self.error else None,
            "failure": self.failure,
        }


def check_input(text: Any, max_length: int = MAX_INPUT_LENGTH) -> Optional[InputError]:
    """Typed rejection for unusable input; None when the text can be processed."""
    if text is None:
        return InputError(InputError.NONE, "Input text is None")
    if not isinstance(text, str):
        return InputError(InputError.WRONG_TYPE, f"Input must be a string, got {type(text).__name__}")
    if not text.strip():
        return InputError(InputError.EMPTY, "Input text is empty")
    if len(text) > max_length:
        return InputError(InputError.TOO_LONG, f"Input exceeds {max_length} characters (got {len(text)})")
    return None


def _span_diff(before: Sequence[Entity], after: Sequence[Entity]):
    def keys(entities):
        return Counter((e.entity_type, e.start, e.end, e.source) for e in entities)

    old, new = keys(before), keys(after)
    return sum((new - old).values()), sum((old - new).values())


class DetectionPipeline:
    """
    Ordered detection passes over shared, frozen resources.

    One instance serves any number of concurrent detect() calls; all
    per-document state lives in the PipelineContext of each call.
    """

    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        registry: Optional[RecognizerRegistry] = None,
        ml_classifier: Optional[TokenClassifier] = None,
        retry_config: Optional[RetryConfig] = None,
        enhancer: Optional[ContextEnhancer] = None,
        normalizer: Optional[TextNormalizer] = None,
        max_input_length: int = MAX_INPUT_LENGTH,
    ):
        """
        Args:
            config: User settings (defaults to the process-wide config)
            registry: Recognizer registry; built and frozen when omitted
            ml_classifier: Async token classifier; when omitted a transformers
                model is used only if the "transformers" integration is enabled
            retry_config: Backoff for ML calls
            enhancer: Context enhancer (shares the registry's deny-list by default)
            normalizer: Text normalizer
            max_input_length: Longer inputs are rejected with INPUT_TOO_LONG
        """
        self.config = config or get_config()
        self.max_input_length = max_input_length

        if registry is None:
            registry = create_default_registry(config=RegistryConfig(
                enabled_countries=frozenset(c.upper() for c in self.config.enabled_countries or ()),
                enabled_languages=frozenset(self.config.enabled_languages or ()),
            ))
        self.registry = registry
        self.deny_list = registry.deny_list
        self.validators = registry.validators
        self.enhancer = enhancer or ContextEnhancer(deny_list=self.deny_list)

        if ml_classifier is None and self.config.is_integration_enabled("transformers"):
            ml_classifier = TransformersTokenClassifier()
        self.ml_recognizer = MLRecognizer(ml_classifier, retry_config) if ml_classifier is not None else None

        features = self.config.is_feature_enabled
        self.passes: List[DetectionPass] = sorted(
            [
                NormalizePass(normalizer),
                RecognizePass(self.registry, self.ml_recognizer),
                DenyListFilterPass(self.deny_list, enabled=features("deny_list")),
                FormatValidationPass(self.validators),
                ContextScoringPass(self.enhancer, enabled=features("context_enhancement")),
                DocumentTypePass(enabled=features("document_type_rules")),
                AddressRelationshipPass(enabled=features("address_grouping")),
                ConsolidationPass(Consolidator(enable_entity_linking=features("entity_linking"))),
            ],
            key=lambda p: p.order,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def detect(self, text: Any, options: Optional[DetectionOptions] = None) -> DetectionResult:
        """
        Detect PII in one document.

        Args:
            text: Document text
            options: Per-call options

        Returns:
            DetectionResult; entity offsets refer to ``text``
        """
        options = options or DetectionOptions()
        error = check_input(text, self.max_input_length)
        if error is not None:
            logger.warning(f"Rejected detection input: {error.code}")
            return DetectionResult(error=error, metadata={"document_id": options.document_id})

        language = options.language
        if language is not None and language not in SUPPORTED_LANGUAGES:
            logger.warning(f"Unsupported language {language!r}; detecting from text")
            language = None

        started = time.perf_counter()
        context = PipelineContext(original_text=text, options=options, language=language)
        pass_results = await self._run_passes(context)
        entities = self._finalize(context)

        pass_metadata = context.metadata
        recognize = pass_metadata.get(RecognizePass.name, {})
        ml_status = recognize.get("ml_status")
        if ml_status is None:
            ml_status = ML_DEGRADED if self.ml_recognizer is not None else ML_DISABLED

        metadata = {
            "document_id": options.document_id,
            "enhancements_enabled": options.enhancements_enabled,
            "pass_results": [r.to_dict() for r in pass_results],
            "pass_timings": {r.name: round(r.duration_ms, 3) for r in pass_results},
            "entity_counts": entity_counts(entities),
            "flagged_count": sum(1 for e in entities if e.metadata.get("flagged_for_review")),
            "deny_list_filtered": pass_metadata.get(DenyListFilterPass.name, {}).get("deny_list_filtered", {}),
            "context_boosted": pass_metadata.get(ContextScoringPass.name, {}).get("context_boosted", {}),
            "ml_status": ml_status,
            "recognizer_errors": recognize.get("recognizer_errors", []),
            "consolidation": pass_metadata.get(ConsolidationPass.name, {}).get("consolidation", {}),
            "document_classification": pass_metadata.get(DocumentTypePass.name, {}).get("document_type"),
            "total_duration_ms": (time.perf_counter() - started) * 1000,
        }
        logger.info(
            f"Detected {len(entities)} entities ({metadata['flagged_count']} flagged) "
            f"in {metadata['total_duration_ms']:.1f}ms, ml={ml_status}"
        )
        return DetectionResult(
            entities=entities,
            text=text,
            language=context.language,
            document_type=context.document_type,
            metadata=metadata,
        )

    def detect_sync(self, text: Any, options: Optional[DetectionOptions] = None) -> DetectionResult:
        """Blocking wrapper around detect() for callers without an event loop."""
        return asyncio.run(self.detect(text, options))

    async def detect_many(
        self,
        texts: Sequence[Any],
        options: Optional[DetectionOptions] = None,
    ) -> List[DetectionResult]:
        """
        Detect several documents concurrently.

        Each document runs in its own task with its own context; a document
        whose task fails or is cancelled gets a result with ``failure`` set
        and the others are unaffected.
        """
        tasks = [asyncio.ensure_future(self.detect(text, options)) for text in texts]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        results = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.warning(f"Document detection did not complete: {outcome.__class__.__name__}")
                results.append(DetectionResult(failure=outcome.__class__.__name__))
            else:
                results.append(outcome)
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_passes(self, context: PipelineContext) -> List[PassResult]:
        results = []
        for detection_pass in self.passes:
            name = detection_pass.name
            if not detection_pass.enabled:
                results.append(PassResult(name, status=DISABLED))
                continue

            before = context.entities
            started = time.perf_counter()
            try:
                output = detection_pass.execute(context)
                if inspect.isawaitable(output):
                    output = await output
            except Exception as e:
                duration = (time.perf_counter() - started) * 1000
                if detection_pass.required:
                    logger.error(f"Pass {name} failed: {e.__class__.__name__}; aborting")
                    raise PipelineError(f"{name} failed: {e.__class__.__name__}") from e
                logger.warning(f"Pass {name} failed: {e.__class__.__name__}; continuing without it")
                results.append(PassResult(name, duration_ms=duration, status=FAILED, error=e.__class__.__name__))
                continue

            duration = (time.perf_counter() - started) * 1000
            added, removed = _span_diff(before, output.entities)
            context.entities = output.entities
            context.metadata[name] = output.metadata
            results.append(PassResult(
                name,
                added=added,
                removed=removed,
                duration_ms=duration,
                status=SKIPPED if output.skipped else OK,
            ))
            logger.debug(f"Pass {name}: +{added} -{removed} in {duration:.1f}ms")
        return results

    def _finalize(self, context: PipelineContext) -> List[Entity]:
        """Map spans back to the original text and set the review flags."""
        normalization = context.normalization
        original = context.original_text
        final = []
        for entity in context.entities:
            if not self.config.is_entity_enabled(entity.entity_type):
                continue
            start, end = normalization.map_span(entity.start, entity.end)
            metadata = {
                "flagged_for_review": entity.confidence < REVIEW_THRESHOLD,
                "selected": entity.source == MANUAL
                or entity.confidence >= self.config.get_threshold(entity.entity_type),
            }
            if "component_spans" in entity.metadata:
                metadata["component_spans"] = _map_component_spans(
                    entity.metadata["component_spans"], normalization, original
                )
            final.append(entity.with_span(start, end, original[start:end]).with_metadata(**metadata))
        final.sort(key=lambda e: (e.start, e.end))
        return final


def _map_component_spans(spans, normalization: NormalizationResult, original: str):
    mapped = []
    for span in spans:
        start, end = normalization.map_span(span["start"], span["end"])
        mapped.append({**span, "start": start, "end": end, "text": original[start:end]})
    return mapped
