"""ONNX Runtime greedy text generation backend."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Iterable

from local_llm_core.inference.generation import GreedyGenerator


class OnnxGenerationBackend:
    """Greedy generation over a ``logits`` graph with a sliding context window."""

    name = "onnx"

    def __init__(self, *, model_name: str, aliases: Iterable[str], generator: GreedyGenerator) -> None:
        self.model_name = model_name
        self._aliases = list(aliases)
        self._generator = generator

    def generate_sync(
        self,
        prompt: str,
        max_tokens: int,
        *,
        on_partial: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        return self._generator.generate(prompt, max_tokens, on_partial=on_partial, cancel=cancel)

    async def generate(
        self,
        prompt: str,
        max_tokens: int,
        *,
        on_partial: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Run the decode loop in a worker thread.

        Cancelling the awaiting task (timeout, client disconnect) sets ``cancel``
        so the loop stops at its next step boundary.
        """
        cancel = cancel or threading.Event()
        try:
            return await asyncio.to_thread(
                self.generate_sync,
                prompt,
                max_tokens,
                on_partial=on_partial,
                cancel=cancel,
            )
        except asyncio.CancelledError:
            cancel.set()
            raise

    def advertised_models(self) -> list[str]:
        output = list(self._aliases)
        if self.model_name not in output:
            output.append(self.model_name)
        return output
