"""
PII detection - recognizers, validators and the detection pipeline

Rule recognizers are presidio pattern recognizers; the optional ML recognizer
wraps a transformers token-classification model.
"""

from .validators import (
    ConfidenceLevel,
    ValidationResult,
    ValidatorRegistry,
    create_default_validator_registry,
    validate_iban,
    validate_swiss_avs,
    validate_vat,
    validate_date,
    validate_email,
    validate_phone,
    validate_swiss_postal_code,
    validate_swiss_address,
    validate_street_address,
    # Checksum algorithms
    iban_checksum_valid,
    ean13_check_digit,
    swiss_uid_check_digit,
)
from .recognizers import PatternRecognizer, PatternSpec, RecognizerConfig
from .recognizer_registry import RecognizerRegistry, RegistryConfig, create_default_registry
from .config_loader import load_recognizers, validate_recognizer_config
from .context_enhancer import ColumnHint, ContextEnhancer, RegionHint
from .document_classifier import DocumentClassifier, DocumentType, detect_language
from .consolidation import Consolidator
from .ml_merger import merge_subword_tokens
from .pipeline import DetectionOptions, DetectionPipeline, DetectionResult

__all__ = [
    # Validation
    "ConfidenceLevel",
    "ValidationResult",
    "ValidatorRegistry",
    "create_default_validator_registry",
    "validate_iban",
    "validate_swiss_avs",
    "validate_vat",
    "validate_date",
    "validate_email",
    "validate_phone",
    "validate_swiss_postal_code",
    "validate_swiss_address",
    "validate_street_address",
    "iban_checksum_valid",
    "ean13_check_digit",
    "swiss_uid_check_digit",
    # Recognizers
    "PatternRecognizer",
    "PatternSpec",
    "RecognizerConfig",
    "RecognizerRegistry",
    "RegistryConfig",
    "create_default_registry",
    "load_recognizers",
    "validate_recognizer_config",
    # Enhancement
    "ColumnHint",
    "RegionHint",
    "ContextEnhancer",
    "DocumentClassifier",
    "DocumentType",
    "detect_language",
    "Consolidator",
    "merge_subword_tokens",
    # Pipeline
    "DetectionOptions",
    "DetectionPipeline",
    "DetectionResult",
]
