"""
OpenVINO Embedding Encoder
============================
Runs a sentence-transformers style model (ONNX or OpenVINO IR) through
OpenVINO Runtime and returns one vector per input text.

Pipeline (per batch):
    1. **Tokenize**: texts -> padded ``input_ids`` / ``attention_mask``
       matrices of shape (batch, seq_len).
    2. **Infer**: run the compiled model.  The output is either already
       pooled (batch, hidden) or per-token (batch, seq_len, hidden); which
       one is decided once, when the model is loaded.
    3. **Pool**: per-token outputs are mean pooled over real tokens.
    4. **L2 normalise**: unless ``skip_normalize`` is set.

Model directory layout::

    models/all-MiniLM-L6-v2/
        model.onnx        (or model.xml + model.bin)
        tokenizer.json

Usage::

    config = EncoderConfig(model_path="models/all-MiniLM-L6-v2")
    with EmbeddingEncoder(config) as encoder:
        vectors = encoder.encode(["Hello world", "Another sentence"])
        # vectors.shape == (2, 384), dtype == float32, L2-normalised
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from tqdm import tqdm

from embedder.config import EncoderConfig, load_encoder_config
from embedder.embeddings.pooling import l2_normalize, mean_pool, take_pooled
from embedder.embeddings.tokenizer import BatchTokenizer, HFTokenizer
from embedder.errors import ConfigurationError, InferenceError, LifecycleError
from embedder.runtime.environment import RuntimeEnvironment, close_resources, global_environment
from embedder.runtime.session import InferenceSession
from embedder.runtime.shapes import ModelOutputSpec, resolve_output_spec

logger = logging.getLogger(__name__)


class EmbeddingEncoder:
    """
    Text-to-vector encoder backed by an OpenVINO inference session.

    Args:
        config      : encoder configuration.
        tokenizer   : object with ``encode_single(text)`` and ``pad_id``;
                      loaded from ``config.tokenizer_path`` when omitted.
        environment : runtime environment to compile with.  When omitted,
                      the process-wide one is used if ``shared_runtime`` is
                      set, otherwise a private one is created.

    The environment is destroyed by ``close()`` only when
    ``config.shared_runtime`` is False.
    """

    def __init__(
        self,
        config: EncoderConfig,
        tokenizer: Any = None,
        environment: Optional[RuntimeEnvironment] = None,
    ):
        self.config = config
        self._session: Optional[InferenceSession] = None
        self._owns_environment = not config.shared_runtime

        model_file = config.resolve_model_file()
        if tokenizer is None:
            tokenizer = HFTokenizer.from_file(config.tokenizer_path)
        self._tokenizer = BatchTokenizer(tokenizer)

        if environment is None:
            environment = global_environment() if config.shared_runtime else RuntimeEnvironment()
        self._environment = environment

        try:
            environment.initialize()
            model = environment.read_model(model_file)
            self._spec: ModelOutputSpec = resolve_output_spec(
                model,
                config.input_ids_name,
                config.attention_mask_name,
                config.output_name,
            )
            device = environment.select_device(config.device)
            self._session = InferenceSession.bind(
                environment,
                model,
                config.input_ids_name,
                config.attention_mask_name,
                config.output_name,
                device=device,
                extra_inputs=self._spec.extra_inputs,
            )
        except Exception:
            try:
                close_resources(None, environment, self._owns_environment)
            except LifecycleError as exc:
                logger.error("Cleanup after failed load also failed: %s", exc)
            raise

        self._pool = take_pooled if self._spec.pooled else mean_pool
        self.device = device

        logger.info(
            "Loaded embedding model %s on %s (dim=%d, %s output)",
            model_file,
            device,
            self._spec.hidden_size,
            "pooled" if self._spec.pooled else "per-token",
        )

    @classmethod
    def from_settings(cls, path: Optional[str] = None, **overrides: Any) -> "EmbeddingEncoder":
        """Build an encoder from configs/settings.yaml (or ``path``)."""
        return cls(load_encoder_config(path, **overrides))

    def __enter__(self) -> "EmbeddingEncoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def dimension(self) -> int:
        return self._spec.hidden_size

    @property
    def output_spec(self) -> ModelOutputSpec:
        return self._spec

    @property
    def environment(self) -> RuntimeEnvironment:
        return self._environment

    @property
    def owns_environment(self) -> bool:
        return self._owns_environment

    def encode(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
        show_progress: bool = False,
    ) -> np.ndarray:
        """
        Encode texts into embedding vectors.

        Args:
            texts         : strings to encode.
            batch_size    : texts per inference call (default: config.batch_size).
            show_progress : display a tqdm progress bar.

        Returns:
            np.ndarray of shape (len(texts), dimension), dtype float32,
            rows in input order.

        Raises:
            TokenizationError : a text was rejected by the tokenizer.
            InferenceError    : the encoder is closed or inference failed.
            ConfigurationError: ``batch_size`` is not positive.
        """
        if self._session is None or not self._session.is_open:
            raise InferenceError("encoder not initialized")

        texts = list(texts)
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        if batch_size is None:
            batch_size = self.config.batch_size
        elif batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        starts = range(0, len(texts), batch_size)
        if show_progress:
            starts = tqdm(
                starts,
                desc="Encoding",
                unit="batch",
                total=(len(texts) + batch_size - 1) // batch_size,
            )

        chunks: List[np.ndarray] = [
            self._encode_batch(texts[start:start + batch_size]) for start in starts
        ]
        embeddings = np.concatenate(chunks, axis=0)
        logger.debug("Encoded %d texts -> shape %s", len(texts), embeddings.shape)
        return embeddings

    def _encode_batch(self, texts: List[str]) -> np.ndarray:
        batch = self._tokenizer.encode_batch(texts, self.config.max_seq_len)
        output_shape = self._spec.output_shape(batch.batch_size, batch.seq_len)
        output = self._session.run(batch.ids, batch.mask, output_shape)

        vectors = self._pool(output, batch.mask)
        if not self.config.skip_normalize:
            l2_normalize(vectors)
        return vectors

    def encode_single(self, text: str) -> np.ndarray:
        """Encode a single text string, return a 1-D vector."""
        return self.encode([text])[0]

    def benchmark(
        self,
        texts: List[str],
        batch_size: Optional[int] = None,
        n_runs: int = 5,
    ) -> Dict[str, Any]:
        """
        Time ``encode`` over ``n_runs`` runs after one warmup run.

        Returns:
            Dict with device, batch settings and latency stats in ms.
        """
        self.encode(texts, batch_size=batch_size)

        times = []
        for _ in range(n_runs):
            start = time.perf_counter()
            self.encode(texts, batch_size=batch_size)
            times.append(time.perf_counter() - start)

        times_arr = np.array(times)
        return {
            "device": self.device,
            "n_texts": len(texts),
            "batch_size": batch_size or self.config.batch_size,
            "n_runs": n_runs,
            "mean_ms": float(times_arr.mean() * 1000),
            "std_ms": float(times_arr.std() * 1000),
            "min_ms": float(times_arr.min() * 1000),
            "max_ms": float(times_arr.max() * 1000),
            "texts_per_sec": float(len(texts) / times_arr.mean()),
        }

    def close(self) -> None:
        """
        Destroy the session and, if owned, the runtime environment.

        Safe to call more than once.

        Raises:
            LifecycleError : teardown failed; carries both failures if the
                             session and the environment both failed.
        """
        session, self._session = self._session, None
        close_resources(session, self._environment, self._owns_environment)
