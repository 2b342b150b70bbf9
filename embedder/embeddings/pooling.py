"""
Pooling and normalisation of model outputs.

Per-token models return one hidden vector per token (B x T x H).  To get a
single embedding per sentence the token vectors are averaged over real
tokens only, using the attention mask to exclude padding.  Already pooled
models (B x H) are copied through unchanged.

Both paths are optionally followed by L2 normalisation, so that dot product
equals cosine similarity.
"""

import numpy as np


def take_pooled(output: np.ndarray, mask: np.ndarray = None) -> np.ndarray:
    """Copy an already pooled [B, H] output.  ``mask`` is ignored."""
    return np.array(output, dtype=np.float32, copy=True)


def mean_pool(hidden: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Masked mean over the token axis.

    Args:
        hidden : [B, T, H] token embeddings
        mask   : [B, T] attention mask, non-zero for real tokens

    Returns:
        [B, H] float32.  Rows whose mask is all zero are zero vectors.
    """
    batch, _, dim = hidden.shape
    present = np.asarray(mask) != 0  # (B, T)
    # masked positions are dropped, not multiplied by zero (inf * 0 is nan)
    masked = np.where(present[:, :, np.newaxis], hidden.astype(np.float32), 0.0)
    sums = masked.sum(axis=1, dtype=np.float32)  # (B, H)
    counts = present.sum(axis=1, keepdims=True).astype(np.float32)  # (B, 1)
    out = np.zeros((batch, dim), dtype=np.float32)
    np.divide(sums, counts, out=out, where=counts > 0)
    return out


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """
    Scale each row of ``vectors`` to unit length, in place.

    All-zero rows are left untouched.  Returns ``vectors`` for chaining.
    """
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    np.divide(vectors, norms, out=vectors, where=norms > 0)
    return vectors
