"""ONNX Runtime embedding backend: WordPiece, mean pooling, L2 normalization."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

import numpy as np

from local_llm_core.backends.base import EmbeddingResult
from local_llm_core.errors import ShapeError
from local_llm_core.inference.pooling import l2_normalize, mean_pool
from local_llm_core.inference.session import InferenceSession
from local_llm_core.inference.tensors import build_embedding_batch
from local_llm_core.inference.tokenizers import WordPieceTokenizer, basic_tokens

logger = logging.getLogger(__name__)


class OnnxEmbeddingBackend:
    """Embeddings from a ``last_hidden_state`` graph.

    Degenerate policy: an input with no word or number tokens embeds to the
    zero vector. The graph still sees its CLS/SEP pair, but that row is
    masked out of pooling.
    """

    name = "onnx"

    def __init__(
        self,
        *,
        model_name: str,
        aliases: Iterable[str],
        tokenizer: WordPieceTokenizer,
        session: InferenceSession,
    ) -> None:
        self.model_name = model_name
        self._aliases = list(aliases)
        self._tokenizer = tokenizer
        self._session = session
        hidden = session.output_shape("last_hidden_state")
        self.dimension = int(hidden[-1]) if hidden and isinstance(hidden[-1], int) else 0

    def embed_sync(self, inputs: list[str]) -> EmbeddingResult:
        if not inputs:
            return EmbeddingResult(vectors=[], model=self.model_name)

        sequences = [self._tokenizer.encode(text) for text in inputs]
        batch = build_embedding_batch(
            sequences,
            width=self._tokenizer.max_length,
            pad_id=self._tokenizer.vocabulary.pad_id,
        )
        outputs = self._session.run(batch.feeds())
        hidden = outputs["last_hidden_state"]
        if hidden.ndim == 3 and hidden.shape[0] != len(inputs):
            raise ShapeError(f"expected batch of {len(inputs)} hidden states, got {hidden.shape[0]}")

        pooling_mask = batch.attention_mask.copy()
        for row, text in enumerate(inputs):
            if not basic_tokens(text):
                pooling_mask[row, :] = 0

        vectors = l2_normalize(mean_pool(hidden, pooling_mask))
        if self.dimension == 0:
            self.dimension = int(vectors.shape[1])
        elif vectors.shape[1] != self.dimension:
            raise ShapeError(f"expected hidden size {self.dimension}, got {vectors.shape[1]}")
        return EmbeddingResult(vectors=vectors.astype(np.float32).tolist(), model=self.model_name)

    async def embed(self, inputs: list[str]) -> EmbeddingResult:
        return await asyncio.to_thread(self.embed_sync, inputs)

    def advertised_models(self) -> list[str]:
        output = list(self._aliases)
        if self.model_name not in output:
            output.append(self.model_name)
        return output
