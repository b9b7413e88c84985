"""Masked mean pooling and L2 normalization of hidden states."""

from __future__ import annotations

import numpy as np

from local_llm_core.errors import ShapeError


def mean_pool(hidden_states: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """Average ``(batch, seq, dim)`` hidden vectors over positions where mask is 1.

    Rows with no unmasked position pool to the zero vector.
    """
    if hidden_states.ndim != 3:
        raise ShapeError(f"expected hidden states of rank 3, got shape {hidden_states.shape}")
    if attention_mask.ndim != 2 or hidden_states.shape[:2] != attention_mask.shape:
        raise ShapeError(
            f"hidden states {hidden_states.shape} do not match attention mask {attention_mask.shape}"
        )

    mask = (attention_mask == 1).astype(np.float32)[:, :, np.newaxis]
    summed = (hidden_states.astype(np.float32) * mask).sum(axis=1)
    counts = mask.sum(axis=1)
    pooled = np.zeros_like(summed)
    np.divide(summed, counts, out=pooled, where=counts > 0)
    return pooled


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    out = np.zeros_like(vectors)
    np.divide(vectors, norms, out=out, where=norms > 0)
    return out
