"""Tests for persisted detection settings."""

import json
import logging

from veil_engine.detection_config import (
    DEFAULT_THRESHOLDS,
    MAX_THRESHOLD,
    MIN_THRESHOLD,
    REVIEW_THRESHOLD,
    DetectionConfig,
)


def test_defaults(config):
    assert config.get_threshold("IBAN") == DEFAULT_THRESHOLDS["IBAN"]
    assert config.get_threshold("UNKNOWN_TYPE") == REVIEW_THRESHOLD
    assert config.is_entity_enabled("PERSON_NAME")
    assert config.is_entity_enabled("SOMETHING_NEW")
    assert config.is_feature_enabled("deny_list")
    assert not config.is_integration_enabled("transformers")
    assert config.enabled_languages is None
    assert not config.is_modified()
    assert not config.config_path.exists()


def test_set_threshold_clamps_and_persists(config):
    config.set_threshold("IBAN", 0.99, reason="too many false positives")
    config.set_threshold("EMAIL", 0.05)
    assert config.get_threshold("IBAN") == MAX_THRESHOLD
    assert config.get_threshold("EMAIL") == MIN_THRESHOLD
    assert config.is_modified()

    reloaded = DetectionConfig(config_path=str(config.config_path))
    assert reloaded.get_threshold("IBAN") == MAX_THRESHOLD
    history = reloaded.config["adjustment_history"]
    assert history[0]["old_value"] == DEFAULT_THRESHOLDS["IBAN"]
    assert history[0]["reason"] == "too many false positives"


def test_invalid_json_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "detection_config.json"
    path.write_text("{not json", encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        config = DetectionConfig(config_path=str(path))
    assert config.get_threshold("IBAN") == DEFAULT_THRESHOLDS["IBAN"]
    assert "using defaults" in caplog.text


def test_out_of_range_threshold_rejects_file(tmp_path, caplog):
    path = tmp_path / "detection_config.json"
    path.write_text(json.dumps({"thresholds": {"IBAN": 1.5, "EMAIL": 0.7}}), encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        config = DetectionConfig(config_path=str(path))
    assert config.get_threshold("EMAIL") == DEFAULT_THRESHOLDS["EMAIL"]
    assert "Invalid config" in caplog.text


def test_unsupported_language_rejects_file(tmp_path):
    path = tmp_path / "detection_config.json"
    path.write_text(json.dumps({"enabled_languages": ["de", "it"]}), encoding="utf-8")
    assert DetectionConfig(config_path=str(path)).enabled_languages is None


def test_saved_values_merge_with_defaults(tmp_path):
    path = tmp_path / "detection_config.json"
    path.write_text(json.dumps({
        "thresholds": {"IBAN": 0.7},
        "enabled_languages": ["fr"],
        "future_setting": {"ignored": True},
    }), encoding="utf-8")
    config = DetectionConfig(config_path=str(path))
    assert config.get_threshold("IBAN") == 0.7
    assert config.get_threshold("EMAIL") == DEFAULT_THRESHOLDS["EMAIL"]
    assert config.enabled_languages == ["fr"]


def test_update_all(config):
    config.update_all(
        thresholds={"DATE": 2.0},
        enabled_entities={"DATE": False},
        enabled_features={"entity_linking": False},
        enabled_integrations={"transformers": True},
    )
    assert config.get_threshold("DATE") == MAX_THRESHOLD
    assert not config.is_entity_enabled("DATE")
    assert not config.is_feature_enabled("entity_linking")
    assert config.is_integration_enabled("transformers")
    assert config.config_path.exists()


def test_toggles_persist(config):
    config.set_enabled_entity("PHONE_NUMBER", False)
    config.set_feature("context_enhancement", False)
    config.set_enabled_integration("phonenumbers", False)
    reloaded = DetectionConfig(config_path=str(config.config_path))
    assert not reloaded.is_entity_enabled("PHONE_NUMBER")
    assert not reloaded.is_feature_enabled("context_enhancement")
    assert not reloaded.is_integration_enabled("phonenumbers")


def test_reset(config):
    config.set_threshold("IBAN", 0.9)
    config.set_feature("deny_list", False)
    config.reset()
    assert not config.is_modified()
    assert config.get_threshold("IBAN") == DEFAULT_THRESHOLDS["IBAN"]
    assert config.config["adjustment_history"][-1]["entity_type"] == "ALL"


def test_stats(config):
    config.set_threshold("IBAN", 0.8)
    stats = config.get_stats()
    assert stats["is_modified"]
    assert stats["total_adjustments"] == 1
    assert stats["thresholds"]["IBAN"] == 0.8
