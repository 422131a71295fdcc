"""Configuration handling for whispervibe."""

import os
import tomllib
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CATALOG: Dict[str, str] = {
    "tiny": "Systran/faster-whisper-tiny",
    "base": "Systran/faster-whisper-base",
    "small": "Systran/faster-whisper-small",
}


def get_default_config_path() -> Path:
    """Get the default config file path following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base_dir = Path(xdg_config)
    else:
        base_dir = Path.home() / ".config"

    return base_dir / "whispervibe" / "config.toml"


def get_default_log_path() -> Path:
    """Get the default log file path following XDG spec."""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base_dir = Path(xdg_state)
    else:
        base_dir = Path.home() / ".local" / "state"

    log_dir = base_dir / "whispervibe"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "whispervibe.log"


class ModelConfig(BaseModel):
    """Model catalog and defaults."""

    default_model: str = Field(
        default="base", description="Model tier loaded when a session starts."
    )
    default_language: str = Field(
        default="auto", description="Language code, or 'auto' for detection."
    )
    catalog: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATALOG),
        description="Mapping of model tier to model repository id.",
    )
    download_root: Optional[Path] = Field(
        default=None, description="Directory for downloaded model artifacts."
    )

    @field_validator("default_language")
    @classmethod
    def check_language_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Language cannot be empty (use 'auto')")
        return v

    @model_validator(mode="after")
    def check_default_in_catalog(self) -> "ModelConfig":
        if not self.catalog:
            raise ValueError("Model catalog cannot be empty")
        if self.default_model not in self.catalog:
            raise ValueError(
                f"Default model '{self.default_model}' is not in the catalog "
                f"({', '.join(self.catalog)})"
            )
        return self


class InferenceConfig(BaseModel):
    """Tuning values passed to the inference backend on every run."""

    chunk_length_s: int = Field(
        default=10, ge=1, le=30, description="Length of audio windows (s)."
    )
    stride_length_s: int = Field(
        default=3, ge=0, le=5, description="Overlap between audio windows (s)."
    )
    repetition_penalty: float = Field(
        default=1.4, gt=0, description="Penalty against repeated tokens."
    )
    no_speech_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Probability above which a window is treated as non-speech.",
    )
    beam_size: int = Field(
        default=5,
        ge=1,
        description="Beam size for search (higher is slower but more accurate).",
    )

    @model_validator(mode="after")
    def check_stride_shorter_than_chunk(self) -> "InferenceConfig":
        if self.stride_length_s >= self.chunk_length_s:
            raise ValueError("stride_length_s must be shorter than chunk_length_s")
        return self


class AccelerationConfig(BaseModel):
    """Device settings for the fast and safe acceleration tiers."""

    fast_device: str = Field(default="cuda", description="Device for the fast tier.")
    fast_compute_type: str = Field(
        default="float16", description="Compute type for the fast tier."
    )
    safe_device: str = Field(default="cpu", description="Device for the safe tier.")
    safe_compute_type: str = Field(
        default="int8", description="Compute type for the safe tier."
    )
    cpu_threads: int = Field(
        default=0, ge=0, description="Number of CPU threads for inference (0 = auto)."
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    log_file: Optional[Path] = Field(
        default=None, description="Optional custom log file path."
    )

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in allowed_levels:
            raise ValueError(f"Invalid log level. Choose from {allowed_levels}")
        return upper_v

    @property
    def computed_log_file(self) -> Path:
        return self.log_file or get_default_log_path()


class AppConfig(BaseModel):
    """Root configuration."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    acceleration: AccelerationConfig = Field(default_factory=AccelerationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration.

    If path is not provided, looks for config in the XDG config directory.
    If no config file is found, returns default configuration.

    Args:
        path: Optional path to config file.

    Returns:
        Validated AppConfig instance.

    Raises:
        ValueError: If config file exists but has invalid format/content.
        OSError: If config file exists but can't be read.
    """
    if path is None:
        path = get_default_config_path()

    if not path.exists():
        return AppConfig()

    try:
        with open(path, "rb") as f:
            config_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Error decoding TOML file: {path}\n{e}") from e
    except OSError as e:
        raise OSError(f"Error reading file: {path}\n{e}") from e

    try:
        return AppConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
