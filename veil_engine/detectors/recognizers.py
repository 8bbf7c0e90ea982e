"""
Pattern recognizers built on Microsoft Presidio.

A RecognizerConfig declares patterns, languages, countries, priority and
specificity plus optional deny patterns and a validator. PatternRecognizer
runs the patterns through presidio_analyzer.PatternRecognizer (one per entity
type) and post-filters the matches with deny-lists and validators.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from presidio_analyzer import Pattern
from presidio_analyzer import PatternRecognizer as PresidioPatternRecognizer

from veil_engine.data.deny_list import parse_regex_flags
from veil_engine.types import Entity, RULE

logger = logging.getLogger(__name__)


# Specificity: a country-specific recognizer beats a regional one beats a global one
COUNTRY = 3
REGION = 2
GLOBAL = 1

SPECIFICITY_NAMES = {"country": COUNTRY, "region": REGION, "global": GLOBAL}

DEFAULT_PRIORITY = 50

# Case-insensitive, line-aware; no DOTALL so patterns never run across lines with "."
REGEX_FLAGS = re.IGNORECASE | re.MULTILINE

DenyPattern = Union[str, "re.Pattern"]


@dataclass(frozen=True)
class PatternSpec:
    regex: str
    score: float
    entity_type: str
    name: Optional[str] = None
    is_weak_pattern: bool = False

    def __post_init__(self):
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"pattern score must be within [0, 1], got {self.score}")


@dataclass(frozen=True)
class RecognizerConfig:
    name: str
    supported_languages: Tuple[str, ...]
    supported_countries: Tuple[str, ...]
    patterns: Tuple[PatternSpec, ...]
    priority: int = DEFAULT_PRIORITY
    specificity: int = COUNTRY
    context_words: Tuple[str, ...] = ()
    deny_patterns: Tuple[DenyPattern, ...] = ()
    validator: Optional[Union[str, Callable[..., Any]]] = None
    use_global_context: bool = True
    use_global_deny_list: bool = True

    def __post_init__(self):
        # Accept lists from callers and YAML, store tuples
        for name in ("supported_languages", "supported_countries", "patterns",
                     "context_words", "deny_patterns"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        if self.specificity not in (COUNTRY, REGION, GLOBAL):
            raise ValueError(f"unknown specificity: {self.specificity}")
        if not self.patterns:
            raise ValueError(f"recognizer {self.name} declares no patterns")

    @property
    def entity_types(self) -> List[str]:
        seen: List[str] = []
        for spec in self.patterns:
            if spec.entity_type not in seen:
                seen.append(spec.entity_type)
        return seen


class PatternRecognizer:
    """
    Regex recognizer for one RecognizerConfig.

    Read-only after construction, safe to share across concurrent runs.
    """

    def __init__(self, config: RecognizerConfig):
        self.config = config
        self._specs: Dict[str, PatternSpec] = {}
        self._presidio: List[PresidioPatternRecognizer] = []

        for entity_type in config.entity_types:
            patterns = []
            for index, spec in enumerate(config.patterns):
                if spec.entity_type != entity_type:
                    continue
                pattern_name = spec.name or f"{config.name.lower()}_{index}"
                self._specs[f"{entity_type}:{pattern_name}"] = spec
                patterns.append(Pattern(name=pattern_name, regex=spec.regex, score=spec.score))
            self._presidio.append(
                PresidioPatternRecognizer(
                    supported_entity=entity_type,
                    name=f"{config.name}:{entity_type}",
                    patterns=patterns,
                    global_regex_flags=REGEX_FLAGS,
                )
            )

        self._deny_strings = {
            p.strip().lower() for p in config.deny_patterns if isinstance(p, str)
        }
        self._deny_regexes = [p for p in config.deny_patterns if not isinstance(p, str)]

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def specificity(self) -> int:
        return self.config.specificity

    def supports_language(self, language: str) -> bool:
        return not self.config.supported_languages or language in self.config.supported_languages

    def is_denied(self, matched: str, entity_type: str, language: str, deny_list=None) -> bool:
        """Recognizer deny patterns first, then the shared DenyList when enabled."""
        if matched.strip().lower() in self._deny_strings:
            return True
        if any(regex.search(matched) for regex in self._deny_regexes):
            return True
        if deny_list is not None and self.config.use_global_deny_list:
            return deny_list.is_denied(matched, entity_type, language)
        return False

    def analyze(self, text: str, language: str, deny_list=None, validators=None) -> List[Entity]:
        """
        Run every pattern over text.

        Args:
            text: Normalized document text
            language: Document language (en/fr/de)
            deny_list: Shared DenyList, applied when use_global_deny_list is set
            validators: ValidatorRegistry used when the config names a validator by type

        Returns:
            Entities with source=RULE, in match order
        """
        if not self.supports_language(language):
            return []

        entities: List[Entity] = []
        for recognizer in self._presidio:
            entity_type = recognizer.supported_entities[0]
            for result in recognizer.analyze(text, entities=[entity_type]):
                matched = text[result.start:result.end]
                pattern_name = result.analysis_explanation.pattern_name if result.analysis_explanation else None
                spec = self._specs.get(f"{entity_type}:{pattern_name}")

                if self.is_denied(matched, entity_type, language, deny_list):
                    continue

                confidence = spec.score if spec else result.score
                validation_passed = None
                validation = self._validate(entity_type, matched, text, validators)
                if validation is not None:
                    if not validation.is_valid:
                        logger.debug(
                            f"{self.name}: {entity_type} at {result.start}-{result.end} "
                            f"rejected by validator"
                        )
                        continue
                    validation_passed = True
                    confidence = max(confidence, validation.confidence)

                entities.append(Entity(
                    text=matched,
                    entity_type=entity_type,
                    start=result.start,
                    end=result.end,
                    confidence=confidence,
                    source=RULE,
                    recognizer=self.name,
                    metadata={
                        "pattern_name": pattern_name,
                        "is_weak_pattern": bool(spec and spec.is_weak_pattern),
                        "validation_passed": validation_passed,
                        "context_words": list(self.config.context_words),
                        "use_global_context": self.config.use_global_context,
                        "recognizer_priority": self.priority,
                        "recognizer_specificity": self.specificity,
                    },
                ))
        return entities

    def _validate(self, entity_type: str, matched: str, text: str, validators):
        validator = self.config.validator
        if validator is None:
            return None
        if callable(validator):
            return validator(matched, text)
        if validators is None:
            return None
        return validators.validate(validator, matched, text)

    def __repr__(self) -> str:
        return (
            f"PatternRecognizer(name={self.name!r}, priority={self.priority}, "
            f"specificity={self.specificity}, entities={self.config.entity_types})"
        )


def compile_deny_patterns(entries: Sequence[Any]) -> Tuple[DenyPattern, ...]:
    """Strings stay strings; {"pattern": ..., "type": "regex"} entries compile."""
    compiled: List[DenyPattern] = []
    for entry in entries:
        if isinstance(entry, str):
            compiled.append(entry)
        elif isinstance(entry, dict) and entry.get("type") == "regex":
            compiled.append(re.compile(entry["pattern"], parse_regex_flags(entry.get("flags"))))
        elif isinstance(entry, dict):
            compiled.append(str(entry["pattern"]))
        else:
            compiled.append(entry)
    return tuple(compiled)

