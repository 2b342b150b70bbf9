"""
Batch Tokenizer
================
Turns a list of texts into rectangular ``input_ids`` / ``attention_mask``
matrices for the inference session.

The model artifact was exported from a HuggingFace model, so the tokenizer
must be the exact ``tokenizer.json`` that shipped with it (same WordPiece /
SentencePiece vocabulary, same special tokens).  It is loaded with
``transformers.PreTrainedTokenizerFast``.

Batch layout::

    T = min(longest encoding in the batch, max_len)

    ids  [B, T] : token ids, truncated on the right, right-padded with [PAD]
    mask [B, T] : 1 for real tokens, 0 for padding
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import numpy as np

from embedder.config import MAX_SEQ_LEN_CEILING, clamp_seq_len
from embedder.errors import ConfigurationError, TokenizationError

logger = logging.getLogger(__name__)

# Fallback ids for BERT-style vocabularies without explicit entries.
DEFAULT_CLS_ID = 101
DEFAULT_SEP_ID = 102
DEFAULT_PAD_ID = 0


class HFTokenizer:
    """
    Thin wrapper over a HuggingFace fast tokenizer.

    Exposes the three things the batch tokenizer needs: single-text
    encoding with special tokens, special token lookup with a default, and
    the resolved padding id.
    """

    def __init__(self, tokenizer):
        self._tok = tokenizer
        self._vocab = tokenizer.get_vocab()
        fallback_pad = tokenizer.pad_token_id
        self.cls_id = self.special_token_id("[CLS]", DEFAULT_CLS_ID)
        self.sep_id = self.special_token_id("[SEP]", DEFAULT_SEP_ID)
        self.pad_id = self.special_token_id(
            "[PAD]", DEFAULT_PAD_ID if fallback_pad is None else fallback_pad
        )

    @classmethod
    def from_file(cls, path) -> "HFTokenizer":
        """
        Load a tokenizer from a local ``tokenizer.json``.

        Raises:
            ConfigurationError : if the file is missing or cannot be parsed.
        """
        tokenizer_path = Path(path)
        if not tokenizer_path.is_file():
            raise ConfigurationError(f"Tokenizer file not found: {tokenizer_path}")

        from transformers import PreTrainedTokenizerFast

        try:
            tok = PreTrainedTokenizerFast(tokenizer_file=str(tokenizer_path))
        except Exception as exc:
            raise ConfigurationError(f"Failed to load tokenizer '{tokenizer_path}': {exc}") from exc
        logger.info("Loaded tokenizer: %s (vocab=%d)", tokenizer_path, len(tok))
        return cls(tok)

    @property
    def vocab_size(self) -> int:
        return len(self._tok)

    def special_token_id(self, token: str, default: int) -> int:
        """Return the id of ``token``, or ``default`` if the vocab lacks it."""
        token_id = self._vocab.get(token)
        return default if token_id is None else int(token_id)

    def encode_single(self, text: str) -> List[int]:
        """Encode one text, including [CLS]/[SEP] or their equivalents."""
        return list(self._tok.encode(text, add_special_tokens=True))


@dataclass
class TokenizedBatch:
    """Padded id/mask matrices for one batch."""
    ids: np.ndarray      # [B, T] int64
    mask: np.ndarray     # [B, T] int64
    seq_len: int
    lengths: List[int]   # raw encoded length of each text, before truncation

    @property
    def batch_size(self) -> int:
        return self.ids.shape[0]


class BatchTokenizer:
    """
    Encodes batches of texts with a single-text tokenizer.

    ``tokenizer`` needs ``encode_single(text)`` and ``pad_id``; an
    ``HFTokenizer`` is the usual choice.
    """

    def __init__(self, tokenizer):
        self.tokenizer = tokenizer

    @property
    def pad_id(self) -> int:
        return self.tokenizer.pad_id

    def encode_batch(self, texts: Sequence[str], max_len: int) -> TokenizedBatch:
        """
        Tokenize, truncate and pad a batch.

        A non-positive ``max_len`` means ``MAX_SEQ_LEN_CEILING`` (512);
        larger values are clamped to it.

        Raises:
            TokenizationError : if the tokenizer rejects any text.
        """
        if not texts:
            empty = np.zeros((0, 0), dtype=np.int64)
            return TokenizedBatch(ids=empty, mask=empty.copy(), seq_len=0, lengths=[])

        max_len = clamp_seq_len(max_len, default=MAX_SEQ_LEN_CEILING)

        encodings = []
        for row, text in enumerate(texts):
            try:
                encodings.append(self.tokenizer.encode_single(text))
            except Exception as exc:
                raise TokenizationError(f"tokenizer rejected text #{row}: {exc}") from exc

        lengths = [len(e) for e in encodings]
        seq_len = min(max(lengths), max_len)
        pad_id = self.pad_id

        ids = np.full((len(encodings), seq_len), pad_id, dtype=np.int64)
        mask = np.zeros((len(encodings), seq_len), dtype=np.int64)
        for i, enc in enumerate(encodings):
            row = np.asarray(enc[:seq_len], dtype=np.int64)
            ids[i, : len(row)] = row
            mask[i, : len(row)] = row != pad_id

        truncated = sum(1 for n in lengths if n > seq_len)
        if truncated:
            logger.debug("Truncated %d of %d texts to %d tokens", truncated, len(lengths), seq_len)
        return TokenizedBatch(ids=ids, mask=mask, seq_len=seq_len, lengths=lengths)
