"""Reversible, session-scoped anonymization."""

from .session import (
    AnonymizationResult,
    AnonymizationSession,
    MappingRecord,
    anonymize_document,
    rehydrate,
)

__all__ = [
    "AnonymizationResult",
    "AnonymizationSession",
    "MappingRecord",
    "anonymize_document",
    "rehydrate",
]
