"""
Detection passes.

Each pass takes the shared PipelineContext and returns a PassOutput: the
full entity list after the pass plus pass-scoped metadata. Passes never
mutate entities; they return new lists of new values.

Canonical order:
    10 Normalize
    20 Recognize (rule + ML)
    30 DenyListFilter
    40 FormatValidation
    50 ContextScoring
    60 DocumentType
    70 AddressRelationship
    80 Consolidation
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from veil_engine.data.deny_list import DenyList
from veil_engine.detectors.address_components import COUNTRY, POSTAL_CODE, AddressComponentDetector
from veil_engine.detectors.address_linker import EU, AddressLinker, GroupedAddress
from veil_engine.detectors.address_scorer import AddressScorer, ScoredAddress
from veil_engine.detectors.consolidation import Consolidator
from veil_engine.detectors.context_enhancer import ContextEnhancer
from veil_engine.detectors.document_classifier import (
    DocumentClassification,
    DocumentClassifier,
    apply_type_rules,
    detect_language,
    position_zone,
)
from veil_engine.detectors.recognizer_registry import RecognizerRegistry
from veil_engine.detectors.transformers_ner import ML_DISABLED, MLRecognizer
from veil_engine.detectors.validators import ValidatorRegistry
from veil_engine.preprocessing.text_normalizer import NormalizationResult, TextNormalizer
from veil_engine.types import MANUAL, RULE, Entity

logger = logging.getLogger(__name__)

FORMAT_VALID_BOOST = 1.2

SWISS_COUNTRY_NAMES = frozenset({"switzerland", "suisse", "schweiz", "svizzera", "ch"})


@dataclass
class PipelineContext:
    """Per-run state; one instance per detect() call, never shared."""

    original_text: str
    options: Any
    text: str = ""
    language: Optional[str] = None
    document_type: Optional[str] = None
    classification: Optional[DocumentClassification] = None
    normalization: Optional[NormalizationResult] = None
    entities: List[Entity] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PassOutput:
    entities: List[Entity]
    metadata: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False


def _adjustable(entity: Entity) -> bool:
    # Review corrections keep their confidence
    return entity.source != MANUAL


def entity_counts(entities: Sequence[Entity]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for entity in entities:
        counts[entity.entity_type] = counts.get(entity.entity_type, 0) + 1
    return counts


class DetectionPass:
    """Base class: subclasses set name/order and implement execute()."""

    name = "DetectionPass"
    order = 0
    # Failure of a required pass aborts the run
    required = False

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def execute(self, context: PipelineContext) -> PassOutput:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(order={self.order}, enabled={self.enabled})"


class NormalizePass(DetectionPass):
    name = "Normalize"
    order = 10
    required = True

    def __init__(self, normalizer: Optional[TextNormalizer] = None, enabled: bool = True):
        super().__init__(enabled)
        self.normalizer = normalizer or TextNormalizer()

    def execute(self, context: PipelineContext) -> PassOutput:
        normalization = self.normalizer.normalize(context.original_text)
        context.normalization = normalization
        context.text = normalization.text
        detected = context.language is None
        if detected:
            context.language = detect_language(context.text)
        return PassOutput(
            entities=list(context.entities),
            metadata={
                "changed": normalization.changed,
                "language": context.language,
                "language_detected": detected,
            },
        )


class RecognizePass(DetectionPass):
    """
    Rule recognizers plus the optional ML recognizer.

    The ML call is the only await in the pipeline; when it fails the run
    continues with rule entities and ml_status "degraded".
    """

    name = "Recognize"
    order = 20

    def __init__(
        self,
        registry: RecognizerRegistry,
        ml_recognizer: Optional[MLRecognizer] = None,
        enabled: bool = True,
    ):
        super().__init__(enabled)
        self.registry = registry
        self.ml_recognizer = ml_recognizer

    async def execute(self, context: PipelineContext) -> PassOutput:
        enhancements = context.options.enhancements_enabled
        analysis = self.registry.analyze(context.text, context.language, apply_deny_list=enhancements)
        entities = list(context.entities) + analysis.entities + self._manual_entities(context)

        metadata: Dict[str, Any] = {
            "recognizers_used": analysis.recognizers_used,
            "recognizer_errors": [list(e) for e in analysis.recognizer_errors],
            "rule_entities": len(analysis.entities),
            "ml_status": ML_DISABLED,
        }

        if self.ml_recognizer is not None:
            recognition = await self.ml_recognizer.recognize(context.text)
            entities.extend(recognition.entities)
            metadata.update(
                ml_status=recognition.status,
                ml_attempts=recognition.attempts,
                ml_entities=len(recognition.entities),
            )
            if recognition.warnings:
                metadata["ml_warnings"] = list(recognition.warnings)

        return PassOutput(entities=entities, metadata=metadata)

    @staticmethod
    def _manual_entities(context: PipelineContext) -> List[Entity]:
        """Review corrections arrive in original offsets; move them onto the normalized text."""
        manual = []
        for entity in context.options.manual_entities or ():
            start, end = context.normalization.map_original_span(entity.start, entity.end)
            if end <= start:
                continue
            manual.append(Entity(
                text=context.text[start:end],
                entity_type=entity.entity_type,
                start=start,
                end=end,
                confidence=1.0,
                source=MANUAL,
                recognizer=entity.recognizer,
                metadata=dict(entity.metadata),
            ))
        return manual


class DenyListFilterPass(DetectionPass):
    name = "DenyListFilter"
    order = 30

    def __init__(self, deny_list: DenyList, enabled: bool = True):
        super().__init__(enabled)
        self.deny_list = deny_list

    def execute(self, context: PipelineContext) -> PassOutput:
        if not context.options.enhancements_enabled:
            return PassOutput(entities=list(context.entities), metadata={"skipped": True}, skipped=True)

        kept = []
        filtered: Dict[str, int] = {}
        for entity in context.entities:
            if _adjustable(entity) and self.deny_list.is_denied(entity.text, entity.entity_type, context.language):
                filtered[entity.entity_type] = filtered.get(entity.entity_type, 0) + 1
                continue
            kept.append(entity)
        if filtered:
            logger.debug(f"Deny-list removed {sum(filtered.values())} entities: {filtered}")
        return PassOutput(entities=kept, metadata={"deny_list_filtered": filtered})


class FormatValidationPass(DetectionPass):
    """
    Checksum/format validation for entities a recognizer has not validated.

    Valid values gain 20% confidence (capped at 1.0); invalid ones drop to
    the validator's confidence and are flagged through their metadata.
    """

    name = "FormatValidation"
    order = 40

    def __init__(self, validators: ValidatorRegistry, enabled: bool = True):
        super().__init__(enabled)
        self.validators = validators

    def execute(self, context: PipelineContext) -> PassOutput:
        result = []
        valid = 0
        invalid = 0
        for entity in context.entities:
            if not _adjustable(entity) or entity.metadata.get("validation_passed") is not None:
                result.append(entity)
                continue
            validation = self.validators.validate(entity.entity_type, entity.text, context.text)
            if validation is None:
                result.append(entity)
                continue
            if validation.is_valid:
                valid += 1
                result.append(entity.with_confidence(
                    min(1.0, entity.confidence * FORMAT_VALID_BOOST),
                    validation_passed=True,
                    validation={"status": "valid", "confidence": validation.confidence},
                ))
            else:
                invalid += 1
                result.append(entity.with_confidence(
                    min(entity.confidence, validation.confidence),
                    validation_passed=False,
                    validation={"status": "invalid", "reason": validation.reason},
                ))
        return PassOutput(entities=result, metadata={"validated": valid, "invalid": invalid})


class ContextScoringPass(DetectionPass):
    name = "ContextScoring"
    order = 50

    def __init__(self, enhancer: ContextEnhancer, enabled: bool = True):
        super().__init__(enabled)
        self.enhancer = enhancer

    def execute(self, context: PipelineContext) -> PassOutput:
        if not context.options.enhancements_enabled:
            return PassOutput(entities=list(context.entities), metadata={"skipped": True}, skipped=True)

        options = context.options
        hints = [
            _to_normalized_hint(hint, context.normalization)
            for hint in list(options.column_hints or ()) + list(options.region_hints or ())
        ]
        adjustable = [e for e in context.entities if _adjustable(e)]
        enhanced, boosted = self.enhancer.enhance_all(
            adjustable,
            context.text,
            context.language,
            extra_words=options.extra_context_words,
            hints=hints,
        )
        by_id = {id(original): new for original, new in zip(adjustable, enhanced)}
        entities = [by_id.get(id(e), e) for e in context.entities]
        return PassOutput(entities=entities, metadata={"context_boosted": boosted})


def _to_normalized_hint(hint, normalization: NormalizationResult):
    start, end = normalization.map_original_span(hint.start, hint.end)
    return type(hint)(hint.entity_type, start, end, hint.boost)


class DocumentTypePass(DetectionPass):
    name = "DocumentType"
    order = 60

    def __init__(self, classifier: Optional[DocumentClassifier] = None, enabled: bool = True):
        super().__init__(enabled)
        self.classifier = classifier or DocumentClassifier()

    def execute(self, context: PipelineContext) -> PassOutput:
        hint = context.options.document_type_hint
        if hint:
            classification = DocumentClassification(hint.upper(), 1.0, context.language)
        else:
            classification = self.classifier.classify(context.text, context.language)
        context.classification = classification
        context.document_type = classification.document_type

        adjustable = [e for e in context.entities if _adjustable(e)]
        adjusted = apply_type_rules(adjustable, context.text, classification)
        by_id = {id(original): new for original, new in zip(adjustable, adjusted)}
        entities = [by_id.get(id(e), e) for e in context.entities]
        return PassOutput(
            entities=entities,
            metadata={
                "document_type": classification.to_dict(),
                "rules_applied": classification.rules_apply,
            },
        )


def address_kind(address: GroupedAddress) -> str:
    """SWISS, EU or GENERIC from the postal code shape and the country."""
    country = (address.components.get("country") or "").strip().lower()
    postal = address.component_of(POSTAL_CODE)
    if country in SWISS_COUNTRY_NAMES:
        return "SWISS"
    if postal is not None and postal.detail in ("table", "range"):
        return "SWISS"
    if address.component_of(COUNTRY) is not None or address.pattern_matched == EU:
        return "EU"
    if postal is not None and re.search(r"\d{5}|A-\d{4}", postal.text):
        return "EU"
    return "GENERIC"


class AddressRelationshipPass(DetectionPass):
    """Links address components into one ADDRESS entity per address."""

    name = "AddressRelationship"
    order = 70

    def __init__(
        self,
        detector: Optional[AddressComponentDetector] = None,
        linker: Optional[AddressLinker] = None,
        scorer: Optional[AddressScorer] = None,
        enabled: bool = True,
    ):
        super().__init__(enabled)
        self.detector = detector or AddressComponentDetector()
        self.linker = linker or AddressLinker()
        self.scorer = scorer or AddressScorer()

    def execute(self, context: PipelineContext) -> PassOutput:
        text = context.text
        components = self.detector.detect(text)
        addresses = self.linker.link(components, text)
        entities = list(context.entities)
        flagged = 0
        for address in addresses:
            scored = self.scorer.score(address, position_zone(address.start, len(text)))
            flagged += scored.flagged_for_review
            entities.append(self._to_entity(scored))
        return PassOutput(
            entities=entities,
            metadata={
                "components_found": len(components),
                "addresses_grouped": len(addresses),
                "addresses_flagged": flagged,
            },
        )

    @staticmethod
    def _to_entity(scored: ScoredAddress) -> Entity:
        address = scored.address
        return Entity(
            text=address.text,
            entity_type="ADDRESS",
            start=address.start,
            end=address.end,
            confidence=scored.final_confidence,
            source=RULE,
            recognizer="AddressRelationship",
            metadata={
                "is_grouped_address": True,
                "components": dict(address.components),
                "address_kind": address_kind(address),
                "pattern_matched": address.pattern_matched,
                "scoring_factors": [f.to_dict() for f in scored.scoring_factors],
                "flagged_for_review": scored.flagged_for_review,
                "auto_anonymize": scored.auto_anonymize,
                "component_spans": [
                    {"type": c.component_type, "text": c.text, "start": c.start, "end": c.end}
                    for c in address.component_entities
                ],
            },
        )


class ConsolidationPass(DetectionPass):
    name = "Consolidation"
    order = 80

    def __init__(self, consolidator: Optional[Consolidator] = None, enabled: bool = True):
        super().__init__(enabled)
        self.consolidator = consolidator or Consolidator()

    def execute(self, context: PipelineContext) -> PassOutput:
        result = self.consolidator.consolidate(context.entities, context.text)
        return PassOutput(entities=result.entities, metadata={"consolidation": result.metadata})
