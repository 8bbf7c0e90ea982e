"""
Recognizer registry with priority/specificity resolution.

The registry is populated at startup, frozen, and then shared read-only by
every concurrent detection run.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from veil_engine.data.deny_list import DenyList
from veil_engine.detectors.config_loader import LoadReport, load_recognizers
from veil_engine.detectors.country_recognizers import create_builtin_recognizers
from veil_engine.detectors.recognizers import GLOBAL, PatternRecognizer
from veil_engine.detectors.validators import ValidatorRegistry, create_default_validator_registry
from veil_engine.types import Entity, RegistryFrozenError

logger = logging.getLogger(__name__)

RECOGNIZER_PACK_DIR = Path(__file__).resolve().parent.parent / "data" / "recognizers"

DEFAULT_LOW_CONFIDENCE_MULTIPLIER = 0.4


@dataclass(frozen=True)
class RegistryConfig:
    """Runtime filter over the registered recognizers. Empty sets mean "all"."""

    enabled_countries: frozenset = frozenset()
    enabled_languages: frozenset = frozenset()
    enabled_recognizers: frozenset = frozenset()
    low_score_entity_names: frozenset = frozenset()
    low_confidence_multiplier: float = DEFAULT_LOW_CONFIDENCE_MULTIPLIER

    def __post_init__(self):
        for name in ("enabled_countries", "enabled_languages",
                     "enabled_recognizers", "low_score_entity_names"):
            object.__setattr__(self, name, frozenset(getattr(self, name)))
        if not 0.0 <= self.low_confidence_multiplier <= 1.0:
            raise ValueError("low_confidence_multiplier must be within [0, 1]")


@dataclass
class RegistryAnalysis:
    entities: List[Entity] = field(default_factory=list)
    recognizers_used: List[str] = field(default_factory=list)
    recognizer_errors: List[Tuple[str, str]] = field(default_factory=list)
    analysis_time_ms: float = 0.0


def _sort_key(recognizer: PatternRecognizer):
    return (-recognizer.priority, -recognizer.specificity, recognizer.name)


class RecognizerRegistry:
    """
    Named set of pattern recognizers.

    Registration is idempotent per name: a newcomer with a higher priority
    replaces the existing entry, on equal priority a higher specificity does,
    otherwise the existing entry is kept.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        deny_list: Optional[DenyList] = None,
        validators: Optional[ValidatorRegistry] = None,
    ):
        self._recognizers: Dict[str, PatternRecognizer] = {}
        self._config = config or RegistryConfig()
        self._frozen = False
        self.deny_list = deny_list if deny_list is not None else DenyList()
        self.validators = validators if validators is not None else create_default_validator_registry()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _check_mutable(self):
        if self._frozen:
            raise RegistryFrozenError("recognizer registry is frozen")

    def register(self, recognizer: PatternRecognizer, priority: Optional[int] = None) -> bool:
        """
        Register a recognizer.

        Args:
            recognizer: PatternRecognizer to add
            priority: Overrides the priority declared in its config

        Returns:
            True if the recognizer is now the registered entry for its name
        """
        self._check_mutable()
        if priority is not None and priority != recognizer.priority:
            recognizer = PatternRecognizer(replace(recognizer.config, priority=priority))

        existing = self._recognizers.get(recognizer.name)
        if existing is not None:
            if recognizer.priority < existing.priority:
                return False
            if recognizer.priority == existing.priority and recognizer.specificity <= existing.specificity:
                return False
            logger.debug(f"Replacing recognizer {recognizer.name} (priority {existing.priority} -> {recognizer.priority})")

        self._recognizers[recognizer.name] = recognizer
        return True

    def unregister(self, name: str) -> bool:
        self._check_mutable()
        return self._recognizers.pop(name, None) is not None

    def clear(self):
        self._check_mutable()
        self._recognizers.clear()

    def reset(self):
        """Drop every recognizer and unfreeze. Intended for tests."""
        self._recognizers.clear()
        self._config = RegistryConfig()
        self._frozen = False

    def freeze(self):
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Runtime filter
    # ------------------------------------------------------------------

    @property
    def config(self) -> RegistryConfig:
        return self._config

    def configure(self, **kwargs) -> RegistryConfig:
        """Replace fields of the runtime filter (e.g. enabled_countries={"CH"})."""
        self._check_mutable()
        self._config = replace(self._config, **kwargs)
        return self._config

    def reset_config(self):
        self._check_mutable()
        self._config = RegistryConfig()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._recognizers)

    def __contains__(self, name: str) -> bool:
        return name in self._recognizers

    def get(self, name: str) -> Optional[PatternRecognizer]:
        return self._recognizers.get(name)

    def get_all(self) -> List[PatternRecognizer]:
        """Every recognizer in evaluation order."""
        return sorted(self._recognizers.values(), key=_sort_key)

    def get_by_country(self, country: str) -> List[PatternRecognizer]:
        country = country.upper()
        return [
            r for r in self.get_all()
            if country in r.config.supported_countries or not r.config.supported_countries
        ]

    def get_by_language(self, language: str) -> List[PatternRecognizer]:
        return [r for r in self.get_all() if r.supports_language(language)]

    def get_by_entity_type(self, entity_type: str) -> List[PatternRecognizer]:
        return [r for r in self.get_all() if entity_type in r.config.entity_types]

    def get_filtered(self, language: str) -> List[PatternRecognizer]:
        """Recognizers eligible for a run, honoring the runtime filter."""
        config = self._config
        if config.enabled_languages and language not in config.enabled_languages:
            return []
        selected = []
        for recognizer in self.get_by_language(language):
            if config.enabled_recognizers and recognizer.name not in config.enabled_recognizers:
                continue
            if config.enabled_countries and not self._serves_countries(recognizer, config.enabled_countries):
                continue
            selected.append(recognizer)
        return selected

    @staticmethod
    def _serves_countries(recognizer: PatternRecognizer, countries: Iterable[str]) -> bool:
        supported = recognizer.config.supported_countries
        if not supported or recognizer.specificity == GLOBAL:
            return True
        return any(c in supported for c in countries)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, text: str, language: str, apply_deny_list: bool = True) -> RegistryAnalysis:
        """
        Run every eligible recognizer over text.

        A failing recognizer is logged and recorded; the others still run.
        When two recognizers claim the identical span, the one evaluated
        first (higher priority, then higher specificity) keeps it.
        Spans that only overlap are all kept; consolidation ranks them by
        confidence first and uses priority only as a later tie-break.
        """
        started = time.perf_counter()
        analysis = RegistryAnalysis()
        claimed: Set[Tuple[int, int]] = set()
        deny_list = self.deny_list if apply_deny_list else None
        multiplier = self._config.low_confidence_multiplier
        low_score_types = self._config.low_score_entity_names

        for recognizer in self.get_filtered(language):
            try:
                found = recognizer.analyze(text, language, deny_list=deny_list, validators=self.validators)
            except Exception as e:
                logger.warning(f"Recognizer {recognizer.name} failed: {e.__class__.__name__}")
                analysis.recognizer_errors.append((recognizer.name, e.__class__.__name__))
                continue

            analysis.recognizers_used.append(recognizer.name)
            for entity in found:
                span = (entity.start, entity.end)
                if span in claimed:
                    continue
                claimed.add(span)
                if entity.metadata.get("is_weak_pattern") or entity.entity_type in low_score_types:
                    entity = entity.with_confidence(
                        entity.confidence * multiplier,
                        low_confidence_applied=True,
                    )
                analysis.entities.append(entity)

        analysis.entities.sort(key=lambda e: (e.start, -e.end))
        analysis.analysis_time_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Registry found {len(analysis.entities)} entities with "
            f"{len(analysis.recognizers_used)} recognizers in {analysis.analysis_time_ms:.1f}ms"
        )
        return analysis

    def __repr__(self) -> str:
        return f"RecognizerRegistry(recognizers={len(self)}, frozen={self._frozen})"


def load_recognizer_packs(registry: RecognizerRegistry, directory: Path = RECOGNIZER_PACK_DIR) -> List[LoadReport]:
    """Import every *.yaml pack in a directory, in file-name order."""
    reports = []
    for path in sorted(directory.glob("*.yaml")):
        reports.append(load_recognizers(path, registry))
    return reports


def create_default_registry(
    config: Optional[RegistryConfig] = None,
    deny_list: Optional[DenyList] = None,
    include_packs: bool = True,
) -> RecognizerRegistry:
    """
    Built-in Swiss/EU recognizers plus the shipped YAML packs, frozen.

    Args:
        config: Optional runtime filter
        deny_list: Shared DenyList (defaults are built when omitted)
        include_packs: Also import data/recognizers/*.yaml
    """
    registry = RecognizerRegistry(config=config, deny_list=deny_list)
    for recognizer in create_builtin_recognizers():
        registry.register(recognizer)
    if include_packs:
        load_recognizer_packs(registry)
    registry.freeze()
    logger.info(f"Recognizer registry ready with {len(registry)} recognizers")
    return registry
