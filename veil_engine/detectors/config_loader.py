"""
Declarative recognizer import.

Recognizer packs are YAML (or JSON) documents:

    version: "1.0"
    recognizers:
      - name: SwissQRReference
        supported_languages: [en, fr, de]
        supported_countries: [CH]
        priority: 55
        specificity: country
        patterns:
          - regex: '\\b\\d{2}(?: ?\\d{5}){5}\\b'
            score: 0.6
            entity_type: PAYMENT_REF

Each entry is validated on its own; a broken entry is rejected with a
reason while the rest of the pack still loads.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from veil_engine.detectors.recognizers import (
    DEFAULT_PRIORITY,
    REGEX_FLAGS,
    SPECIFICITY_NAMES,
    PatternRecognizer,
    PatternSpec,
    RecognizerConfig,
    compile_deny_patterns,
)
from veil_engine.types import ConfigValidationError

logger = logging.getLogger(__name__)


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True, extra="ignore")


class PatternSchema(_Schema):
    regex: str
    score: float = Field(..., ge=0.0, le=1.0)
    entity_type: str
    name: Optional[str] = None
    is_weak_pattern: bool = False

    @field_validator("regex")
    @classmethod
    def regex_compiles(cls, value: str) -> str:
        try:
            re.compile(value, REGEX_FLAGS)
        except re.error as e:
            raise ValueError(f"regex does not compile: {e}") from e
        return value


class DenyPatternSchema(_Schema):
    pattern: str
    type: str = "string"
    flags: Optional[str] = None

    @field_validator("type")
    @classmethod
    def known_type(cls, value: str) -> str:
        if value not in ("string", "regex"):
            raise ValueError(f"deny pattern type must be 'string' or 'regex', got {value!r}")
        return value


class RecognizerSchema(_Schema):
    name: str = Field(..., min_length=1)
    supported_languages: List[str] = Field(..., min_length=1)
    supported_countries: List[str] = Field(default_factory=list)
    patterns: List[PatternSchema] = Field(..., min_length=1)
    priority: int = DEFAULT_PRIORITY
    specificity: Union[int, str] = "country"
    context_words: List[str] = Field(default_factory=list)
    deny_patterns: List[Union[str, DenyPatternSchema]] = Field(default_factory=list)
    validator: Optional[str] = None
    use_global_context: bool = True
    use_global_deny_list: bool = True

    @field_validator("specificity")
    @classmethod
    def known_specificity(cls, value: Union[int, str]) -> int:
        if isinstance(value, str):
            if value.lower() not in SPECIFICITY_NAMES:
                raise ValueError(f"unknown specificity {value!r}")
            return SPECIFICITY_NAMES[value.lower()]
        if value not in SPECIFICITY_NAMES.values():
            raise ValueError(f"unknown specificity {value}")
        return value

    def to_config(self) -> RecognizerConfig:
        deny_entries: List[Any] = [
            entry if isinstance(entry, str) else entry.model_dump()
            for entry in self.deny_patterns
        ]
        return RecognizerConfig(
            name=self.name,
            supported_languages=tuple(self.supported_languages),
            supported_countries=tuple(c.upper() for c in self.supported_countries),
            patterns=tuple(
                PatternSpec(
                    regex=p.regex,
                    score=p.score,
                    entity_type=p.entity_type,
                    name=p.name,
                    is_weak_pattern=p.is_weak_pattern,
                )
                for p in self.patterns
            ),
            priority=self.priority,
            specificity=self.specificity,
            context_words=tuple(self.context_words),
            deny_patterns=compile_deny_patterns(deny_entries),
            validator=self.validator,
            use_global_context=self.use_global_context,
            use_global_deny_list=self.use_global_deny_list,
        )


class RecognizerFileSchema(_Schema):
    version: Optional[str] = None
    # Entries stay raw here; each one is validated separately
    recognizers: List[Dict[str, Any]]


@dataclass
class LoadReport:
    """Outcome of importing one recognizer pack."""

    source: str = ""
    loaded: List[str] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.rejected


def _format_errors(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


def _entry_name(entry: Any, index: int) -> str:
    if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]:
        return entry["name"]
    return f"recognizers[{index}]"


def parse_recognizer_entry(entry: Dict[str, Any]) -> RecognizerConfig:
    """
    Validate one recognizer entry.

    Raises:
        ConfigValidationError: with the pydantic error list
    """
    try:
        schema = RecognizerSchema.model_validate(entry)
        return schema.to_config()
    except ValidationError as e:
        raise ConfigValidationError(_format_errors(e), errors=e.errors()) from e
    except (ValueError, re.error) as e:
        raise ConfigValidationError(str(e), errors=[{"msg": str(e)}]) from e


def parse_recognizer_document(data: Any) -> Tuple[List[RecognizerConfig], LoadReport]:
    """Validate a whole pack, collecting per-entry rejections."""
    report = LoadReport()
    try:
        document = RecognizerFileSchema.model_validate(data)
    except ValidationError as e:
        report.errors.append(_format_errors(e))
        return [], report

    configs: List[RecognizerConfig] = []
    for index, entry in enumerate(document.recognizers):
        name = _entry_name(entry, index)
        try:
            configs.append(parse_recognizer_entry(entry))
        except ConfigValidationError as e:
            report.rejected.append((name, str(e)))
    return configs, report


def validate_recognizer_config(data: Any) -> Dict[str, Any]:
    """
    Check a recognizer pack without registering anything.

    Returns:
        {"valid": bool, "errors": [str], "recognizer_count": int}
    """
    configs, report = parse_recognizer_document(data)
    errors = list(report.errors)
    errors.extend(f"{name}: {reason}" for name, reason in report.rejected)
    return {
        "valid": not errors,
        "errors": errors,
        "recognizer_count": len(configs),
    }


def read_recognizer_file(path: Union[str, Path]) -> Any:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def load_recognizers(path: Union[str, Path], registry) -> LoadReport:
    """
    Import a recognizer pack into a registry.

    Unreadable files and schema failures are reported, never raised, so the
    registry keeps whatever it already holds.

    Args:
        path: YAML or JSON file
        registry: RecognizerRegistry to register into

    Returns:
        LoadReport with loaded names, rejected (name, reason) pairs and errors
    """
    path = Path(path)
    try:
        data = read_recognizer_file(path)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read recognizer pack {path.name}: {e.__class__.__name__}")
        return LoadReport(source=str(path), errors=[f"{e.__class__.__name__}: {e}"])

    configs, report = parse_recognizer_document(data)
    report.source = str(path)

    for config in configs:
        try:
            registry.register(PatternRecognizer(config))
        except (ValueError, re.error) as e:
            report.rejected.append((config.name, str(e)))
            continue
        report.loaded.append(config.name)

    for name, reason in report.rejected:
        logger.warning(f"Rejected recognizer {name} from {path.name}: {reason}")
    if report.errors:
        logger.warning(f"Recognizer pack {path.name} failed validation ({len(report.errors)} errors)")
    logger.info(f"Loaded {len(report.loaded)} recognizers from {path.name}")
    return report
