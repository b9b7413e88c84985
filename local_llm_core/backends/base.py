"""Embedding and generation backend protocols."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Protocol


@dataclass(frozen=True, slots=True)
class EmbeddingResult:
    """Vectors in input order plus the model that produced them."""

    vectors: list[list[float]]
    model: str


class EmbeddingBackend(Protocol):
    """Backend contract for local embedding generation."""

    name: str
    model_name: str
    dimension: int

    def embed_sync(self, inputs: list[str]) -> EmbeddingResult:
        """Generate one embedding vector for each input text (blocking)."""

    async def embed(self, inputs: list[str]) -> EmbeddingResult:
        """Generate one embedding vector for each input text."""

    def advertised_models(self) -> list[str]:
        """Model identifiers to advertise via /v1/models."""


class GenerationBackend(Protocol):
    """Backend contract for local text generation."""

    name: str
    model_name: str

    def generate_sync(
        self,
        prompt: str,
        max_tokens: int,
        *,
        on_partial: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Generate text for ``prompt`` (blocking)."""

    async def generate(
        self,
        prompt: str,
        max_tokens: int,
        *,
        on_partial: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Generate text for ``prompt`` off the event loop."""

    def advertised_models(self) -> list[str]:
        """Model identifiers to advertise via /v1/models."""
