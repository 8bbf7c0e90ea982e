"""
Veil Engine - Local-first PII detection and anonymization

Swiss/EU personal data detection for English, French and German documents,
with reversible, session-scoped placeholders.
"""

from veil_engine.detection_config import VERSION
__version__ = VERSION

# Lazy imports so the CLI and config can load without presidio being imported
_lazy_imports = {
    "DetectionPipeline": ".detectors.pipeline",
    "DetectionOptions": ".detectors.pipeline",
    "DetectionResult": ".detectors.pipeline",
    "AnonymizationSession": ".anonymizers.session",
    "MappingRecord": ".anonymizers.session",
    "anonymize_document": ".anonymizers.session",
    "Entity": ".types",
}


def __getattr__(name):
    """Lazy import for heavy modules."""
    if name in _lazy_imports:
        import importlib
        module = importlib.import_module(_lazy_imports[name], __package__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "DetectionPipeline",
    "DetectionOptions",
    "DetectionResult",
    "AnonymizationSession",
    "MappingRecord",
    "anonymize_document",
    "Entity",
]
