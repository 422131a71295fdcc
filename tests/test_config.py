"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from whispervibe.config import (
    AppConfig,
    InferenceConfig,
    LoggingConfig,
    ModelConfig,
    get_default_config_path,
    load_config,
)


def test_defaults():
    """Test default configuration values."""
    config = AppConfig()
    assert config.model.default_model == "base"
    assert config.model.default_language == "auto"
    assert set(config.model.catalog) == {"tiny", "base", "small"}
    assert config.inference.chunk_length_s == 10
    assert config.inference.stride_length_s == 3
    assert config.inference.repetition_penalty == 1.4
    assert config.inference.no_speech_threshold == 0.6
    assert config.acceleration.fast_device == "cuda"
    assert config.acceleration.safe_device == "cpu"
    assert config.logging.log_level == "INFO"


def test_missing_file_gives_defaults(tmp_path):
    """Test a missing config file falls back to defaults."""
    config = load_config(tmp_path / "missing.toml")
    assert config == AppConfig()


def test_load_from_toml(tmp_path):
    """Test values are read from a TOML file."""
    path = tmp_path / "config.toml"
    path.write_text(
        """
[model]
default_model = "small"
default_language = "de"

[inference]
chunk_length_s = 30
stride_length_s = 5

[acceleration]
fast_device = "auto"

[logging]
log_level = "debug"
"""
    )
    config = load_config(path)
    assert config.model.default_model == "small"
    assert config.model.default_language == "de"
    assert config.inference.chunk_length_s == 30
    assert config.inference.stride_length_s == 5
    assert config.acceleration.fast_device == "auto"
    assert config.logging.log_level == "DEBUG"


def test_invalid_toml(tmp_path):
    """Test malformed TOML is reported."""
    path = tmp_path / "config.toml"
    path.write_text("[model\n")
    with pytest.raises(ValueError, match="Error decoding TOML"):
        load_config(path)


def test_invalid_values(tmp_path):
    """Test invalid values fail validation."""
    path = tmp_path / "config.toml"
    path.write_text('[logging]\nlog_level = "LOUD"\n')
    with pytest.raises(ValueError, match="Configuration validation failed"):
        load_config(path)


def test_default_model_must_be_in_catalog():
    """Test the default model must name a catalog entry."""
    with pytest.raises(ValidationError):
        ModelConfig(default_model="huge")


def test_stride_must_be_shorter_than_chunk():
    """Test stride validation."""
    with pytest.raises(ValidationError):
        InferenceConfig(chunk_length_s=3, stride_length_s=3)


def test_log_level_normalized():
    """Test log levels are upper-cased."""
    assert LoggingConfig(log_level="warning").log_level == "WARNING"


def test_default_config_path_uses_xdg(monkeypatch, tmp_path):
    """Test XDG_CONFIG_HOME is honoured."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert get_default_config_path() == tmp_path / "whispervibe" / "config.toml"
