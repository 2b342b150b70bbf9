"""
Encoder Configuration
======================
Settings for one ``EmbeddingEncoder`` and the loader for
``configs/settings.yaml``.

The settings file has two relevant sections::

    openvino:
      device: "CPU"            # or "GPU", "NPU", "AUTO", "MULTI:CPU,GPU"

    encoder:
      model_path: "models/all-MiniLM-L6-v2"
      output_name: "last_hidden_state"
      max_seq_len: 256
      skip_normalize: false
      shared_runtime: false

Sequence length policy:
    ``max_seq_len`` is always clamped to ``MAX_SEQ_LEN_CEILING``.  A
    non-positive value falls back to ``DEFAULT_MAX_SEQ_LEN``.  The batch
    tokenizer applies the same ceiling, so every path truncates alike.
"""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from embedder.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Path to the project settings file
SETTINGS_PATH = Path(__file__).resolve().parent.parent / "configs" / "settings.yaml"

DEFAULT_MAX_SEQ_LEN = 256
MAX_SEQ_LEN_CEILING = 512
DEFAULT_BATCH_SIZE = 32

# Artifact names probed inside ``model_path`` when ``model_file`` is unset.
MODEL_FILE_CANDIDATES: Tuple[str, ...] = ("model.xml", "model.onnx")
DEFAULT_TOKENIZER_FILE = "tokenizer.json"


def clamp_seq_len(max_seq_len: int, default: int = DEFAULT_MAX_SEQ_LEN) -> int:
    """Apply the sequence length policy: default for <= 0, ceiling above."""
    if max_seq_len <= 0:
        return default
    return min(max_seq_len, MAX_SEQ_LEN_CEILING)


@dataclass(frozen=True)
class EncoderConfig:
    """
    Immutable configuration for one encoder.

    Attributes:
        model_path          : directory holding the model artifact and tokenizer.json
        input_ids_name      : name of the token id input port
        attention_mask_name : name of the attention mask input port
        output_name         : name of the output port ([B,H] or [B,T,H])
        max_seq_len         : truncation length, clamped to MAX_SEQ_LEN_CEILING
        skip_normalize      : if True, vectors are returned without L2 normalisation
        shared_runtime      : if True, the encoder uses the process-wide runtime
                              environment and never tears it down
        device              : OpenVINO device string
        model_file          : explicit artifact file name inside model_path
        tokenizer_file      : tokenizer artifact file name inside model_path
        batch_size          : texts per inference call
    """
    model_path: str
    input_ids_name: str = "input_ids"
    attention_mask_name: str = "attention_mask"
    output_name: str = "last_hidden_state"
    max_seq_len: int = DEFAULT_MAX_SEQ_LEN
    skip_normalize: bool = False
    shared_runtime: bool = False
    device: str = "CPU"
    model_file: Optional[str] = None
    tokenizer_file: str = DEFAULT_TOKENIZER_FILE
    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self):
        if not self.model_path:
            raise ConfigurationError("model_path is required")
        for name in ("input_ids_name", "attention_mask_name", "output_name"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} must be a non-empty string")
        if self.input_ids_name == self.attention_mask_name:
            raise ConfigurationError(
                f"input_ids_name and attention_mask_name are both '{self.input_ids_name}'"
            )

        for name in ("max_seq_len", "batch_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(
                    f"{name} must be an integer, got {type(value).__name__} {value!r}"
                )

        seq_len = clamp_seq_len(self.max_seq_len)
        if seq_len != self.max_seq_len:
            logger.warning(
                "max_seq_len=%s adjusted to %d (ceiling %d)",
                self.max_seq_len, seq_len, MAX_SEQ_LEN_CEILING,
            )
            object.__setattr__(self, "max_seq_len", seq_len)

        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")

    @property
    def model_dir(self) -> Path:
        return Path(self.model_path)

    @property
    def tokenizer_path(self) -> Path:
        return self.model_dir / self.tokenizer_file

    def resolve_model_file(self) -> Path:
        """
        Locate the model artifact inside ``model_path``.

        Raises:
            ConfigurationError : if the directory or the artifact is missing.
        """
        model_dir = self.model_dir
        if not model_dir.is_dir():
            raise ConfigurationError(f"Model directory not found: {model_dir}")

        if self.model_file:
            candidate = model_dir / self.model_file
            if not candidate.is_file():
                raise ConfigurationError(f"Model file not found: {candidate}")
            return candidate

        for name in MODEL_FILE_CANDIDATES:
            candidate = model_dir / name
            if candidate.is_file():
                return candidate
        raise ConfigurationError(
            f"No model artifact in {model_dir} (looked for {', '.join(MODEL_FILE_CANDIDATES)})"
        )

    def with_overrides(self, **overrides: Any) -> "EncoderConfig":
        """Return a copy with the given fields replaced (None values ignored)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def load_settings(path: Optional[str] = None) -> dict:
    """
    Load settings from configs/settings.yaml (or ``path``).

    Returns:
        The parsed YAML as a dict, or empty dict if the file is not found.

    Raises:
        ConfigurationError : if the file exists but is not valid YAML.
    """
    settings_path = Path(path) if path else SETTINGS_PATH
    if not settings_path.exists():
        logger.warning("Settings file not found: %s", settings_path)
        return {}
    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid settings file {settings_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {settings_path} must contain a mapping")
    return data


def config_from_dict(settings: Dict[str, Any]) -> EncoderConfig:
    """
    Build an ``EncoderConfig`` from a parsed settings mapping.

    ``encoder`` keys map one-to-one onto config fields; ``openvino.device``
    supplies the device when ``encoder.device`` is absent.
    """
    section = dict(settings.get("encoder") or {})
    known = {f.name for f in fields(EncoderConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown encoder settings: {', '.join(unknown)}")

    ov_settings = settings.get("openvino") or {}
    if "device" not in section and ov_settings.get("device"):
        section["device"] = ov_settings["device"]

    try:
        return EncoderConfig(**section)
    except TypeError as exc:
        raise ConfigurationError(f"Incomplete encoder settings: {exc}") from exc


def load_encoder_config(path: Optional[str] = None, **overrides: Any) -> EncoderConfig:
    """Read settings.yaml and return the encoder config, applying overrides."""
    settings = load_settings(path)
    if overrides.get("model_path"):
        section = dict(settings.get("encoder") or {})
        section["model_path"] = overrides.pop("model_path")
        settings = {**settings, "encoder": section}
    config = config_from_dict(settings)
    return config.with_overrides(**overrides)
