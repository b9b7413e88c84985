"""Hash-bucket embedding backend for offline use and testing."""

from __future__ import annotations

from itertools import groupby
from typing import Iterable

import numpy as np

from local_llm_core.backends.base import EmbeddingResult


def _char_class(char: str) -> str | None:
    if char.isalpha():
        return "letter"
    if char.isnumeric():
        return "number"
    return None


def word_runs(text: str) -> list[str]:
    """Maximal runs of letters or of numeric characters; everything else separates."""
    return ["".join(run) for kind, run in groupby(text, key=_char_class) if kind is not None]


_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fnv1a32(text: str) -> int:
    value = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


class HashEmbeddingBackend:
    """Signed feature hashing of word and number runs into a fixed dimension.

    Degenerate policy: text without any word or number yields a unit vector at
    the bucket of the empty string, never the zero vector.
    """

    name = "hash"

    def __init__(self, *, model_name: str, aliases: Iterable[str], dimension: int) -> None:
        self.model_name = model_name
        self._aliases = list(aliases)
        self.dimension = dimension

    def _vectorize(self, text: str) -> list[float]:
        values = np.zeros(self.dimension, dtype=np.float32)
        tokens = word_runs(text.lower())
        if not tokens:
            values[fnv1a32("") % self.dimension] = 1.0
            return values.tolist()

        for token in tokens:
            sign = -1.0 if fnv1a32(token + "_alt") & 1 else 1.0
            values[fnv1a32(token) % self.dimension] += sign

        norm = float(np.linalg.norm(values))
        if norm > 0:
            values = values / norm
        else:
            # Signed collisions cancelled out.
            values[fnv1a32("") % self.dimension] = 1.0
        return values.tolist()

    def embed_sync(self, inputs: list[str]) -> EmbeddingResult:
        return EmbeddingResult(vectors=[self._vectorize(item) for item in inputs], model=self.model_name)

    async def embed(self, inputs: list[str]) -> EmbeddingResult:
        return self.embed_sync(inputs)

    def advertised_models(self) -> list[str]:
        output = list(self._aliases)
        if self.model_name not in output:
            output.append(self.model_name)
        return output
