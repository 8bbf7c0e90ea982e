"""
Context-aware confidence enhancement.

Looks for lexical cues in a window around each entity. Labels usually
precede values ("IBAN: CH93 ..."), so words before the entity weigh more
than words after it. Positive words raise confidence, negative words lower
it, and neither side can move the score by more than similarity_factor.

Runtime hints from the caller (table columns, layout regions) add a bounded
boost on top.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from veil_engine.data.context_words import (
    ContextWord,
    NEGATIVE,
    POSITIVE,
    get_context_words,
    get_global_context_words,
)
from veil_engine.types import Entity

logger = logging.getLogger(__name__)

# Per-type window sizes; labels for short identifiers sit right next to them
TYPE_WINDOW_SIZES = {
    "PERSON_NAME": 150,
    "IBAN": 40,
    "EMAIL": 50,
    "PHONE_NUMBER": 60,
    "SWISS_AVS": 60,
}

RECOGNIZER_WORD_WEIGHT = 0.8
COLUMN_HINT_BOOST = 0.2


@dataclass(frozen=True)
class ContextEnhancerConfig:
    window_size: int = 100
    similarity_factor: float = 0.35
    min_score_with_context: float = 0.4
    preceding_weight: float = 1.2
    following_weight: float = 0.8
    runtime_word_weight: float = 0.7
    max_hint_boost: float = 0.5
    type_window_sizes: Dict[str, int] = field(default_factory=lambda: dict(TYPE_WINDOW_SIZES))

    def window_for(self, entity_type: str) -> int:
        return self.type_window_sizes.get(entity_type, self.window_size)


@dataclass(frozen=True)
class ColumnHint:
    """Caller knows a table column [start, end) holds values of entity_type."""

    entity_type: str
    start: int
    end: int
    boost: float = COLUMN_HINT_BOOST


@dataclass(frozen=True)
class RegionHint:
    """Caller knows a layout region [start, end) is likely to hold entity_type."""

    entity_type: str
    start: int
    end: int
    boost: float = 0.1


Hint = Union[ColumnHint, RegionHint]


@dataclass
class EnhancementResult:
    entity: Entity
    context_found: List[str] = field(default_factory=list)
    boost_applied: float = 0.0
    original_confidence: float = 0.0
    skipped: bool = False
    skip_reason: Optional[str] = None
    hint_boost: float = 0.0


@lru_cache(maxsize=2048)
def _word_pattern(word: str) -> "re.Pattern":
    # Whole-word match so short cues ("ag", "m.") never fire inside other words
    return re.compile(rf"(?<!\w){re.escape(word.lower())}(?!\w)")


def _as_runtime_words(words: Iterable[Union[str, ContextWord]], weight: float) -> List[ContextWord]:
    result = []
    for word in words:
        if isinstance(word, ContextWord):
            result.append(ContextWord(word.word, word.weight * weight, word.polarity))
        elif word:
            result.append(ContextWord(str(word), weight, POSITIVE))
    return result


class ContextEnhancer:
    """
    Direction-aware context scoring.

    Stateless apart from its config; one instance serves every concurrent
    detection run.
    """

    def __init__(self, config: Optional[ContextEnhancerConfig] = None, deny_list=None):
        self.config = config or ContextEnhancerConfig()
        self.deny_list = deny_list

    def collect_words(
        self,
        entity: Entity,
        language: str,
        extra_words: Optional[Sequence[Union[str, ContextWord]]] = None,
    ) -> List[ContextWord]:
        """Type defaults, global words, recognizer words, then runtime words."""
        words = get_context_words(entity.entity_type, language)
        if entity.metadata.get("use_global_context", True):
            words.extend(get_global_context_words(language))
        words.extend(
            ContextWord(word, RECOGNIZER_WORD_WEIGHT, POSITIVE)
            for word in entity.metadata.get("context_words") or ()
        )
        if extra_words:
            words.extend(_as_runtime_words(extra_words, self.config.runtime_word_weight))
        return words

    def enhance(
        self,
        entity: Entity,
        text: str,
        language: str,
        extra_words: Optional[Sequence[Union[str, ContextWord]]] = None,
        hints: Optional[Sequence[Hint]] = None,
    ) -> EnhancementResult:
        """
        Adjust one entity's confidence from the words around it.

        Args:
            entity: Entity with offsets into text
            text: Document text the offsets refer to
            language: Document language (en/fr/de)
            extra_words: Runtime context words, applied at reduced weight
            hints: Column/region hints from the caller

        Returns:
            EnhancementResult with the adjusted entity
        """
        original = entity.confidence

        if self.deny_list is not None and self.deny_list.is_denied(entity.text, entity.entity_type, language):
            return EnhancementResult(
                entity=entity,
                original_confidence=original,
                skipped=True,
                skip_reason="denied",
            )

        config = self.config
        window = config.window_for(entity.entity_type)
        preceding = text[max(0, entity.start - window):entity.start].lower()
        following = text[entity.end:entity.end + window].lower()

        found: List[str] = []
        positive = 0.0
        negative = 0.0
        for word in self.collect_words(entity, language, extra_words):
            pattern = _word_pattern(word.word)
            in_preceding = pattern.search(preceding) is not None
            in_following = pattern.search(following) is not None
            if not (in_preceding or in_following):
                continue
            found.append(word.word)
            contribution = 0.0
            if in_preceding:
                contribution += word.weight * config.preceding_weight
            if in_following:
                contribution += word.weight * config.following_weight
            contribution = min(contribution, word.weight * 2)
            if word.polarity == NEGATIVE:
                negative += contribution
            else:
                positive += contribution

        confidence = original
        if found:
            max_direction = max(config.preceding_weight, config.following_weight)
            capped_positive = min(positive / max_direction * config.similarity_factor, config.similarity_factor)
            capped_negative = min(negative / max_direction * config.similarity_factor, config.similarity_factor)
            net = capped_positive - capped_negative
            confidence = original + net
            if capped_positive > 0 and net > 0:
                confidence = max(confidence, config.min_score_with_context)

        hint_boost = self._hint_boost(entity, hints)
        confidence = max(0.0, min(1.0, confidence + hint_boost))

        if confidence == original:
            return EnhancementResult(
                entity=entity,
                context_found=found,
                original_confidence=original,
            )

        enhanced = entity.with_confidence(
            confidence,
            context_found=found,
            context_boost=confidence - original,
        )
        return EnhancementResult(
            entity=enhanced,
            context_found=found,
            boost_applied=enhanced.confidence - original,
            original_confidence=original,
            hint_boost=hint_boost,
        )

    def _hint_boost(self, entity: Entity, hints: Optional[Sequence[Hint]]) -> float:
        if not hints:
            return 0.0
        total = 0.0
        for hint in hints:
            if hint.entity_type != entity.entity_type:
                continue
            if hint.start <= entity.start and entity.end <= hint.end:
                total += hint.boost
        return max(0.0, min(self.config.max_hint_boost, total))

    def enhance_all(
        self,
        entities: Sequence[Entity],
        text: str,
        language: str,
        extra_words: Optional[Sequence[Union[str, ContextWord]]] = None,
        hints: Optional[Sequence[Hint]] = None,
    ) -> Tuple[List[Entity], Dict[str, int]]:
        """
        Enhance every entity.

        Returns:
            (entities, boosted count per entity type)
        """
        enhanced: List[Entity] = []
        boosted: Dict[str, int] = {}
        for entity in entities:
            result = self.enhance(entity, text, language, extra_words, hints)
            enhanced.append(result.entity)
            if result.boost_applied > 0:
                boosted[entity.entity_type] = boosted.get(entity.entity_type, 0) + 1
        if boosted:
            logger.debug(f"Context boosted entities: {boosted}")
        return enhanced, boosted
