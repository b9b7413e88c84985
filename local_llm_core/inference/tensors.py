"""Batch tensor construction for the embedding and generation graphs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from local_llm_core.errors import EncodingDegenerate


@dataclass(frozen=True, slots=True)
class BatchTensors:
    """Rectangular int64 tensors fed to a graph."""

    input_ids: np.ndarray
    attention_mask: np.ndarray
    token_type_ids: np.ndarray | None = None
    position_ids: np.ndarray | None = None

    @property
    def shape(self) -> tuple[int, int]:
        batch, width = self.input_ids.shape
        return int(batch), int(width)

    def feeds(self) -> dict[str, np.ndarray]:
        """Named graph inputs, omitting auxiliary tensors that were not built."""
        out = {"input_ids": self.input_ids, "attention_mask": self.attention_mask}
        if self.token_type_ids is not None:
            out["token_type_ids"] = self.token_type_ids
        if self.position_ids is not None:
            out["position_ids"] = self.position_ids
        return out


def build_embedding_batch(sequences: Sequence[Sequence[int]], *, width: int, pad_id: int) -> BatchTensors:
    """Right-pad or right-truncate every sequence to ``width``; token types are all zero."""
    if width < 1:
        raise ValueError("width must be positive")

    input_ids = np.full((len(sequences), width), pad_id, dtype=np.int64)
    attention_mask = np.zeros((len(sequences), width), dtype=np.int64)
    for row, sequence in enumerate(sequences):
        if not sequence:
            raise EncodingDegenerate(f"sequence at index {row} is empty")
        kept = list(sequence)[:width]
        input_ids[row, : len(kept)] = kept
        attention_mask[row, : len(kept)] = 1

    return BatchTensors(
        input_ids=input_ids,
        attention_mask=attention_mask,
        token_type_ids=np.zeros_like(input_ids),
    )


def build_generation_inputs(sequence: Sequence[int]) -> BatchTensors:
    """Single unpadded row; positions restart at 0 for the oldest retained token."""
    if not sequence:
        raise EncodingDegenerate("generation sequence is empty")

    width = len(sequence)
    return BatchTensors(
        input_ids=np.asarray([sequence], dtype=np.int64),
        attention_mask=np.ones((1, width), dtype=np.int64),
        position_ids=np.arange(width, dtype=np.int64).reshape(1, width),
    )
