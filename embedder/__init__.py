"""
OpenVINO Sentence Embedder -- root package.

Turns batches of text into fixed-size embedding vectors:
    embeddings -> tokenize, pool and normalise; the ``EmbeddingEncoder`` facade
    runtime    -> OpenVINO runtime environment, shape resolution, inference sessions
    config     -> encoder configuration and settings.yaml loading
    errors     -> exception hierarchy shared by every module
"""

__version__ = "0.1.0"

from embedder.config import EncoderConfig, load_encoder_config
from embedder.embeddings.encoder import EmbeddingEncoder
from embedder.errors import (
    ConfigurationError,
    EmbedderError,
    InferenceError,
    LifecycleError,
    TokenizationError,
)

__all__ = [
    "ConfigurationError",
    "EmbedderError",
    "EmbeddingEncoder",
    "EncoderConfig",
    "InferenceError",
    "LifecycleError",
    "TokenizationError",
    "load_encoder_config",
]
