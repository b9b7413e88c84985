from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest

from local_llm_core.config import reset_settings
from local_llm_core.inference.session import (
    EMBEDDING_INPUTS,
    EMBEDDING_OUTPUTS,
    GENERATION_INPUTS,
    GENERATION_OUTPUTS,
    InferenceSession,
)
from local_llm_core.inference.tokenizers import DirectLookupTokenizer, WordPieceTokenizer
from local_llm_core.inference.vocabulary import load_tokenizer_json, load_wordpiece_vocabulary

WORDPIECE_LINES = [
    "[PAD]",
    "[UNK]",
    "[CLS]",
    "[SEP]",
    "hello",
    "world",
    "un",
    "##aff",
    "##able",
    "play",
    "##ing",
    "x",
]

GENERATION_VOCAB = {"<unk>": 0, "the": 1, "cat": 2, "sat": 3, "on": 4, "mat": 5}
EOS_ID = 6


@dataclass
class FakeNode:
    name: str
    shape: tuple[Any, ...] = ()


class FakeRunner:
    """Stands in for onnxruntime.InferenceSession."""

    def __init__(
        self,
        inputs: tuple[str, ...],
        outputs: tuple[str, ...],
        fn: Callable[[dict[str, np.ndarray]], list[np.ndarray]],
        output_shapes: dict[str, tuple[Any, ...]] | None = None,
    ) -> None:
        self._inputs = [FakeNode(name) for name in inputs]
        shapes = output_shapes or {}
        self._outputs = [FakeNode(name, shapes.get(name, ())) for name in outputs]
        self._fn = fn
        self.calls: list[dict[str, np.ndarray]] = []
        self._lock = threading.Lock()

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, input_feed):
        with self._lock:
            self.calls.append({name: value.copy() for name, value in input_feed.items()})
        return self._fn(input_feed)


def scripted_logits(next_token: Callable[[list[int]], int], vocab_size: int = 8):
    """Logits callback whose argmax at the last position is ``next_token(ids)``."""

    def run(feed: dict[str, np.ndarray]) -> list[np.ndarray]:
        ids = feed["input_ids"][0].tolist()
        logits = np.zeros((1, len(ids), vocab_size), dtype=np.float32)
        logits[0, -1, next_token(ids)] = 1.0
        return [logits]

    return run


def table_hidden_states(dimension: int = 8, vocab_size: int = 16, seed: int = 0):
    """Hidden-state callback that looks each input id up in a fixed random table."""
    table = np.random.default_rng(seed).normal(size=(vocab_size, dimension)).astype(np.float32)

    def run(feed: dict[str, np.ndarray]) -> list[np.ndarray]:
        return [table[feed["input_ids"]]]

    return run


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("LOCAL_LLM_CORE_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def vocab_path(tmp_path: Path) -> Path:
    path = tmp_path / "vocab.txt"
    path.write_text("\n".join(WORDPIECE_LINES) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def tokenizer_json_path(tmp_path: Path) -> Path:
    path = tmp_path / "tokenizer.json"
    payload = {
        "model": {"type": "BPE", "vocab": GENERATION_VOCAB},
        "added_tokens": [
            {"id": EOS_ID, "content": "<|endoftext|>", "special": True},
            {"id": 7, "content": "<|im_start|>", "special": True},
        ],
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def wordpiece(vocab_path: Path) -> WordPieceTokenizer:
    return WordPieceTokenizer(load_wordpiece_vocabulary(vocab_path), max_length=8)


@pytest.fixture
def direct_lookup(tokenizer_json_path: Path) -> DirectLookupTokenizer:
    return DirectLookupTokenizer(load_tokenizer_json(tokenizer_json_path))


def make_embedding_session(fn=None, dimension: int = 8) -> tuple[InferenceSession, FakeRunner]:
    runner = FakeRunner(
        EMBEDDING_INPUTS,
        EMBEDDING_OUTPUTS,
        fn or table_hidden_states(dimension),
        output_shapes={"last_hidden_state": ("batch", "sequence", dimension)},
    )
    session = InferenceSession(runner, input_names=EMBEDDING_INPUTS, output_names=EMBEDDING_OUTPUTS)
    return session, runner


def make_generation_session(next_token: Callable[[list[int]], int]) -> tuple[InferenceSession, FakeRunner]:
    runner = FakeRunner(GENERATION_INPUTS, GENERATION_OUTPUTS, scripted_logits(next_token))
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)
    return session, runner


@pytest.fixture
def eos_id() -> int:
    return EOS_ID


@pytest.fixture
def fake_runner() -> type[FakeRunner]:
    """The FakeRunner class, for tests that declare their own graph names."""
    return FakeRunner


@pytest.fixture
def hidden_states_table():
    return table_hidden_states


@pytest.fixture
def embedding_session():
    """Factory: ``embedding_session(fn=None, dimension=8) -> (session, runner)``."""
    return make_embedding_session


@pytest.fixture
def generation_session():
    """Factory: ``generation_session(next_token) -> (session, runner)``."""
    return make_generation_session
