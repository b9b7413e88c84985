"""Greedy autoregressive decoding over a sliding context window."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable

import numpy as np

from local_llm_core.errors import ShapeError
from local_llm_core.inference.session import InferenceSession
from local_llm_core.inference.tensors import build_generation_inputs
from local_llm_core.inference.tokenizers import DirectLookupTokenizer

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]


class GenerationPhase(str, enum.Enum):
    INIT = "init"
    STEPPING = "stepping"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class GenerationState:
    """Mutable decode state for one request."""

    ids: list[int]
    max_tokens: int
    step: int = 0
    text: str = ""
    phase: GenerationPhase = GenerationPhase.INIT
    stop_reason: str | None = None


def select_next_token(logits: np.ndarray, width: int) -> int:
    """Greedy pick from the last position of a ``(1, seq, vocab)`` logits tensor."""
    if logits.ndim != 3 or logits.shape[0] != 1 or logits.shape[1] != width:
        raise ShapeError(f"expected logits of shape (1, {width}, vocab), got {logits.shape}")
    if logits.shape[2] == 0:
        raise ShapeError("logits have an empty vocabulary axis")
    return int(np.argmax(logits[0, -1]))


class GreedyGenerator:
    """Runs the INIT -> STEPPING -> {DONE, CANCELLED} decode loop.

    Every step recomputes the full forward pass over the retained window; no
    key/value cache is carried between steps. Position ids restart at 0 for the
    oldest retained token after the window starts sliding.
    """

    def __init__(self, session: InferenceSession, tokenizer: DirectLookupTokenizer, *, max_context: int) -> None:
        if max_context < 1:
            raise ValueError("max_context must be positive")
        self.session = session
        self.tokenizer = tokenizer
        self.max_context = max_context

    def start(self, prompt: str, max_tokens: int) -> GenerationState:
        ids = self.tokenizer.encode(prompt)
        if len(ids) > self.max_context:
            ids = ids[-self.max_context:]
        return GenerationState(ids=ids, max_tokens=max(0, max_tokens))

    def step(self, state: GenerationState) -> None:
        """Advance one token, updating ``state`` in place."""
        state.phase = GenerationPhase.STEPPING
        tensors = build_generation_inputs(state.ids)
        outputs = self.session.run(tensors.feeds())
        next_id = select_next_token(outputs["logits"], tensors.shape[1])

        state.ids.append(next_id)
        if len(state.ids) > self.max_context:
            del state.ids[0]
        state.step += 1

        if self.tokenizer.is_eos(next_id):
            state.phase = GenerationPhase.DONE
            state.stop_reason = "eos"
        elif state.step >= state.max_tokens:
            state.phase = GenerationPhase.DONE
            state.stop_reason = "length"

        state.text = self.tokenizer.decode(state.ids)

    def generate(
        self,
        prompt: str,
        max_tokens: int,
        *,
        on_partial: PartialCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Decode up to ``max_tokens`` tokens and return the decoded final sequence.

        ``on_partial`` receives the full decoded text after every step.
        Cancellation is polled at step boundaries and returns the text as of the
        last completed step.
        """
        state = self.start(prompt, max_tokens)
        if state.max_tokens == 0:
            state.phase = GenerationPhase.DONE
            state.stop_reason = "length"

        while state.phase in (GenerationPhase.INIT, GenerationPhase.STEPPING):
            if cancel is not None and cancel.is_set():
                state.phase = GenerationPhase.CANCELLED
                state.stop_reason = "cancelled"
                break
            self.step(state)
            if on_partial is not None:
                on_partial(state.text)

        logger.debug(
            "Generation finished: phase=%s reason=%s steps=%d",
            state.phase.value,
            state.stop_reason,
            state.step,
        )
        return state.text
