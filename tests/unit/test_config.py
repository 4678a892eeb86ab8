import json
import logging

import pytest

from har_openapi import ConfigurationError
from har_openapi.config import DEFAULTS, apply_log_level, load_config, validate_config


def test_load_config_without_path_returns_defaults():
    config = load_config(None)
    assert config == DEFAULTS
    assert config is not DEFAULTS


def test_load_json_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "sensitive_headers": ["x-custom-header", "x-internal-id"],
        "rules": {"^account$": "HASH"},
        "min_variants": "3",
    }))
    config = load_config(str(path))

    assert config["sensitive_headers"] == ["x-custom-header", "x-internal-id"]
    assert config["min_variants"] == 3
    assert config["title"] == DEFAULTS["title"]


def test_load_yaml_config(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("sanitisation_options:\n  credit_cards: false\nredact_binary_content: false\n")
    config = load_config(str(path))

    assert config["sanitisation_options"] == {"credit_cards": False}
    assert config["redact_binary_content"] is False


def test_empty_yaml_config_is_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == DEFAULTS


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_unreadable_config_raises(tmp_path, content):
    path = tmp_path / "config.json"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.json"))


@pytest.mark.parametrize("config", [
    {"rules": {"token": "shred"}},
    {"rules": ["token"]},
    {"sensitive_headers": "x-custom-header"},
    {"min_variants": 1},
    {"min_variants": "many"},
    {"streaming_threshold_mb": "big"},
    {"streaming_threshold_mb": 0},
])
def test_invalid_values_raise(config):
    with pytest.raises(ConfigurationError):
        validate_config(config)


def test_unknown_keys_are_ignored_with_warning(caplog):
    config = validate_config({"excluded_domains": ["example.com"]})
    assert config["excluded_domains"] == ["example.com"]
    assert "Ignoring unknown configuration key: excluded_domains" in caplog.text


@pytest.mark.parametrize("name,level", [
    ("debug", logging.DEBUG),
    ("info", logging.INFO),
    ("warning", logging.WARNING),
    ("error", logging.ERROR),
    ("invalid", logging.INFO),
])
def test_log_level_configuration(name, level):
    package_logger = logging.getLogger("har_openapi.test_config")
    apply_log_level({"log_level": name}, package_logger)
    assert package_logger.level == level
