"""Preprocessing for PII detection: normalization with offset tracking."""

from .text_normalizer import (
    TextNormalizer,
    NormalizationResult,
    normalize_text,
)

__all__ = [
    'TextNormalizer',
    'NormalizationResult',
    'normalize_text',
]
