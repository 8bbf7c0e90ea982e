#!/usr/bin/env python3
"""
Detection Config - Engine constants, feature flags and persisted thresholds
"""

import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Engine version - single source of truth
VERSION = "1.0.0"

# Mapping record format version (additive changes only)
MAPPING_VERSION = "1.0"

# Detection library/integration toggles
DEFAULT_INTEGRATIONS = {
    "transformers": False,       # Token-classification NER (install with: pip install veil-engine[ml])
    "phonenumbers": True,        # Google libphonenumber validation
    "yaml_recognizers": True,    # Recognizer packs shipped in data/recognizers/
}

# Precision feature flags
# deny_list and context_enhancement are the A/B switch exposed per call as
# DetectionOptions.enhancements_enabled
PRECISION_FEATURES = {
    "deny_list": True,             # Table-header / acronym false positive filtering
    "context_enhancement": True,   # Lexical cue confidence adjustment
    "address_grouping": True,      # Street/postal/city linking into one entity
    "document_type_rules": True,   # Position-zone adjustments per document type
    "entity_linking": True,        # Logical ids across repeated mentions
}

# Review thresholds per entity type: below this an entity is flagged for review
DEFAULT_THRESHOLDS = {
    "PERSON_NAME": 0.6,
    "ORGANIZATION": 0.6,
    "LOCATION": 0.6,
    "ADDRESS": 0.6,
    "SWISS_ADDRESS": 0.6,
    "EMAIL": 0.5,
    "PHONE_NUMBER": 0.55,
    "IBAN": 0.5,
    "SWISS_AVS": 0.5,
    "VAT_NUMBER": 0.55,
    "DATE": 0.65,
}

# Minimum threshold (don't go below this even with manual adjustment)
MIN_THRESHOLD = 0.3

# Maximum threshold (don't go above this)
MAX_THRESHOLD = 0.95

# Fallback review threshold for types without an explicit entry
REVIEW_THRESHOLD = 0.6

# Grouped addresses at or above this are safe for unattended redaction
AUTO_ANONYMIZE_THRESHOLD = 0.8

# ML predictions below this are discarded before merging with rule output
ML_CONFIDENCE_THRESHOLD = 0.3

# Below this the document type is UNKNOWN and no type rules are applied
MIN_DOCUMENT_TYPE_CONFIDENCE = 0.4

# Hard input ceilings (characters)
MAX_INPUT_LENGTH = 1_000_000
ML_MAX_INPUT_LENGTH = 100_000

SUPPORTED_LANGUAGES = ("en", "fr", "de")


class _SavedConfig(BaseModel):
    """Schema of the persisted config file. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    thresholds: Dict[str, float] = Field(default_factory=dict)
    enabled_entities: Dict[str, bool] = Field(default_factory=dict)
    enabled_integrations: Dict[str, bool] = Field(default_factory=dict)
    enabled_features: Dict[str, bool] = Field(default_factory=dict)
    enabled_languages: Optional[List[str]] = None
    enabled_countries: Optional[List[str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    adjustment_history: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("thresholds")
    @classmethod
    def _thresholds_in_range(cls, value: Dict[str, float]) -> Dict[str, float]:
        for entity_type, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for {entity_type} must be within [0, 1]")
        return value

    @field_validator("enabled_languages")
    @classmethod
    def _known_languages(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is not None:
            unknown = [lang for lang in value if lang not in SUPPORTED_LANGUAGES]
            if unknown:
                raise ValueError(f"unsupported languages: {', '.join(unknown)}")
        return value


class DetectionConfig:
    """
    Manages detection thresholds and feature flags with persistence
    """

    def __init__(self, config_path: str = None):
        """
        Initialize config manager

        Args:
            config_path: Path to config file (default: ~/.veil/detection_config.json)
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = Path.home() / ".veil" / "detection_config.json"

        self.config: Dict[str, Any] = self._defaults()
        self._load_config()

    @staticmethod
    def _defaults() -> Dict[str, Any]:
        now = datetime.now().isoformat()
        return {
            "thresholds": DEFAULT_THRESHOLDS.copy(),
            "enabled_entities": {k: True for k in DEFAULT_THRESHOLDS},
            "enabled_integrations": DEFAULT_INTEGRATIONS.copy(),
            "enabled_features": PRECISION_FEATURES.copy(),
            "enabled_languages": None,   # None = all supported
            "enabled_countries": None,   # None = all countries
            "created_at": now,
            "updated_at": now,
            "adjustment_history": [],
        }

    def _load_config(self):
        """Load config from file if it exists; invalid files fall back to defaults"""
        if not self.config_path.exists():
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            saved = _SavedConfig.model_validate(raw)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read config {self.config_path}: {e.__class__.__name__}; using defaults")
            return
        except ValidationError as e:
            logger.warning(f"Invalid config {self.config_path} ({e.error_count()} errors); using defaults")
            return

        # Merge with defaults (in case new entity types or features were added)
        self.config["thresholds"] = {**DEFAULT_THRESHOLDS, **saved.thresholds}
        self.config["enabled_entities"] = {
            **{k: True for k in DEFAULT_THRESHOLDS},
            **saved.enabled_entities,
        }
        self.config["enabled_integrations"] = {**DEFAULT_INTEGRATIONS, **saved.enabled_integrations}
        self.config["enabled_features"] = {**PRECISION_FEATURES, **saved.enabled_features}
        self.config["enabled_languages"] = saved.enabled_languages
        self.config["enabled_countries"] = saved.enabled_countries
        self.config["created_at"] = saved.created_at or self.config["created_at"]
        self.config["updated_at"] = saved.updated_at or self.config["updated_at"]
        self.config["adjustment_history"] = saved.adjustment_history

    def save(self):
        """Save config to file"""
        self.config["updated_at"] = datetime.now().isoformat()
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self.config, f, indent=2)

    def get_threshold(self, entity_type: str) -> float:
        """
        Get the review threshold for an entity type

        Args:
            entity_type: Entity type (e.g., "PERSON_NAME", "IBAN")

        Returns:
            Review threshold (0.0 - 1.0)
        """
        return self.config["thresholds"].get(entity_type, REVIEW_THRESHOLD)

    def set_threshold(self, entity_type: str, threshold: float, reason: str = None):
        """
        Set the review threshold for an entity type

        Args:
            entity_type: Entity type
            threshold: New threshold (will be clamped to MIN/MAX)
            reason: Optional reason for the change
        """
        threshold = max(MIN_THRESHOLD, min(MAX_THRESHOLD, threshold))

        old_value = self.config["thresholds"].get(entity_type, REVIEW_THRESHOLD)
        self.config["thresholds"][entity_type] = threshold

        self.config["adjustment_history"].append({
            "entity_type": entity_type,
            "old_value": old_value,
            "new_value": threshold,
            "reason": reason,
            "timestamp": datetime.now().isoformat()
        })

        # Keep only last 100 adjustments
        self.config["adjustment_history"] = self.config["adjustment_history"][-100:]

        self.save()

    def get_all_thresholds(self) -> Dict[str, float]:
        """Get all thresholds"""
        return self.config["thresholds"].copy()

    def is_entity_enabled(self, entity_type: str) -> bool:
        """Check if an entity type is enabled (unknown types default to enabled)"""
        return self.config["enabled_entities"].get(entity_type, True)

    def set_enabled_entity(self, entity_type: str, enabled: bool):
        """Set whether an entity type is enabled"""
        self.config["enabled_entities"][entity_type] = enabled
        self.save()

    def is_feature_enabled(self, feature: str) -> bool:
        """Check if a precision feature is enabled"""
        return self.config["enabled_features"].get(feature, PRECISION_FEATURES.get(feature, False))

    def set_feature(self, feature: str, enabled: bool):
        """Toggle a precision feature"""
        self.config["enabled_features"][feature] = enabled
        self.save()

    def is_integration_enabled(self, integration: str) -> bool:
        """Check if a specific integration is enabled"""
        return self.config["enabled_integrations"].get(integration, False)

    def set_enabled_integration(self, integration: str, enabled: bool):
        """Set whether a detection integration/library is enabled"""
        self.config["enabled_integrations"][integration] = enabled
        self.save()

    @property
    def enabled_languages(self) -> Optional[List[str]]:
        return self.config.get("enabled_languages")

    @property
    def enabled_countries(self) -> Optional[List[str]]:
        return self.config.get("enabled_countries")

    def update_all(
        self,
        thresholds: Dict[str, float] = None,
        enabled_entities: Dict[str, bool] = None,
        enabled_features: Dict[str, bool] = None,
        enabled_integrations: Dict[str, bool] = None,
    ):
        """
        Update thresholds, enabled entities, features and/or integrations in bulk.
        """
        if thresholds:
            for entity_type, threshold in thresholds.items():
                threshold = max(MIN_THRESHOLD, min(MAX_THRESHOLD, threshold))
                self.config["thresholds"][entity_type] = threshold

        if enabled_entities:
            self.config["enabled_entities"].update(enabled_entities)

        if enabled_features:
            self.config["enabled_features"].update(enabled_features)

        if enabled_integrations:
            self.config["enabled_integrations"].update(enabled_integrations)

        self.save()

    def reset(self):
        """Reset all settings to defaults"""
        self.config = self._defaults()
        self.config["adjustment_history"].append({
            "entity_type": "ALL",
            "old_value": "custom",
            "new_value": "defaults",
            "reason": "Manual reset by user",
            "timestamp": datetime.now().isoformat()
        })
        self.save()

    def is_modified(self) -> bool:
        """Check if config has been modified from defaults"""
        for entity_type, default_val in DEFAULT_THRESHOLDS.items():
            if abs(self.config["thresholds"].get(entity_type, default_val) - default_val) > 0.01:
                return True
        return self.config["enabled_features"] != PRECISION_FEATURES

    def get_stats(self) -> Dict[str, Any]:
        """Get config statistics"""
        return {
            "version": VERSION,
            "is_modified": self.is_modified(),
            "total_adjustments": len(self.config["adjustment_history"]),
            "created_at": self.config["created_at"],
            "updated_at": self.config["updated_at"],
            "thresholds": self.get_all_thresholds(),
            "enabled_features": dict(self.config["enabled_features"]),
            "enabled_integrations": dict(self.config["enabled_integrations"]),
        }


# Global instance for convenience (user settings, read-only during detection)
_config_instance: Optional[DetectionConfig] = None


def get_config() -> DetectionConfig:
    """Get the global config instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = DetectionConfig()
    return _config_instance


def reset_config():
    """Reset the global config to shipped defaults."""
    get_config().reset()
