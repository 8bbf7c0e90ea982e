"""
Shared value types for the detection pipeline.

Entities are immutable: every confidence change produces a new Entity via
``with_confidence``. Passes hand lists of entities to each other and never
mutate them in place.
"""

from dataclasses import dataclass, field, replace, asdict
from typing import Any, Dict, Optional


# Detection sources
RULE = "RULE"
ML = "ML"
BOTH = "BOTH"
MANUAL = "MANUAL"

SOURCES = (RULE, ML, BOTH, MANUAL)


class RegistryFrozenError(RuntimeError):
    """Raised when mutating a registry after freeze()."""


class ConfigValidationError(ValueError):
    """External configuration failed schema validation."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class PipelineError(RuntimeError):
    """Unrecoverable pipeline failure (normalization could not run)."""


@dataclass(frozen=True)
class Entity:
    """A detected PII span over the document text."""

    text: str
    entity_type: str
    start: int
    end: int
    confidence: float
    source: str = RULE
    recognizer: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f"unknown source: {self.source}")
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid span [{self.start}, {self.end})")

    @classmethod
    def manual(cls, text: str, entity_type: str, start: int, end: int, **metadata) -> "Entity":
        """Review correction: always trusted."""
        return cls(text, entity_type, start, end, 1.0, source=MANUAL, metadata=dict(metadata))

    @property
    def length(self) -> int:
        return self.end - self.start

    def with_confidence(self, confidence: float, **metadata) -> "Entity":
        confidence = max(0.0, min(1.0, confidence))
        return replace(self, confidence=confidence, metadata={**self.metadata, **metadata})

    def with_metadata(self, **metadata) -> "Entity":
        return replace(self, metadata={**self.metadata, **metadata})

    def with_span(self, start: int, end: int, text: str) -> "Entity":
        return replace(self, start=start, end=end, text=text)

    def overlaps(self, other: "Entity") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Entity") -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = data.pop("entity_type")
        return data


@dataclass(frozen=True)
class AnonymizedRange:
    start: int
    end: int
    placeholder: str

    def intersects(self, start: int, end: int) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class InputError:
    """Typed rejection of detection input. Returned, never raised."""

    code: str
    message: str

    EMPTY = "EMPTY_INPUT"
    NONE = "NULL_INPUT"
    TOO_LONG = "INPUT_TOO_LONG"
    WRONG_TYPE = "INVALID_TYPE"
