from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from local_llm_core.errors import RuntimeExecError, SessionInitError
from local_llm_core.inference.session import (
    EMBEDDING_INPUTS,
    EMBEDDING_OUTPUTS,
    GENERATION_INPUTS,
    GENERATION_OUTPUTS,
    InferenceSession,
    open_session,
)


def echo_logits(feed):
    return [feed["input_ids"].astype(np.float32)[:, :, np.newaxis]]


def test_session_runs_with_declared_names(fake_runner):
    runner = fake_runner(GENERATION_INPUTS, GENERATION_OUTPUTS, echo_logits)
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)

    feeds = {name: np.ones((1, 2), dtype=np.int64) for name in GENERATION_INPUTS}
    feeds["unused"] = np.zeros(1)
    outputs = session.run(feeds)

    assert list(outputs) == ["logits"]
    assert outputs["logits"].shape == (1, 2, 1)
    assert set(runner.calls[0]) == set(GENERATION_INPUTS)


def test_session_rejects_missing_input_name(fake_runner):
    runner = fake_runner(("input_ids", "attention_mask"), EMBEDDING_OUTPUTS, echo_logits)
    with pytest.raises(SessionInitError, match="token_type_ids"):
        InferenceSession(runner, input_names=EMBEDDING_INPUTS, output_names=EMBEDDING_OUTPUTS)


def test_session_rejects_undeclared_graph_input(fake_runner):
    runner = fake_runner(GENERATION_INPUTS + ("past_key_values.0.key",), GENERATION_OUTPUTS, echo_logits)
    with pytest.raises(SessionInitError, match="past_key_values"):
        InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)


def test_session_rejects_missing_output_name(fake_runner):
    runner = fake_runner(EMBEDDING_INPUTS, ("sentence_embedding",), echo_logits)
    with pytest.raises(SessionInitError, match="last_hidden_state"):
        InferenceSession(runner, input_names=EMBEDDING_INPUTS, output_names=EMBEDDING_OUTPUTS)


def test_session_validates_once(fake_runner):
    runner = fake_runner(GENERATION_INPUTS, GENERATION_OUTPUTS, echo_logits)
    calls = []
    original = runner.get_inputs

    def counting_get_inputs():
        calls.append(1)
        return original()

    runner.get_inputs = counting_get_inputs
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)
    feeds = {name: np.ones((1, 1), dtype=np.int64) for name in GENERATION_INPUTS}
    session.run(feeds)
    session.run(feeds)

    assert len(calls) == 1


def test_session_missing_feed_is_runtime_error(fake_runner):
    runner = fake_runner(GENERATION_INPUTS, GENERATION_OUTPUTS, echo_logits)
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)
    with pytest.raises(RuntimeExecError, match="position_ids"):
        session.run({"input_ids": np.ones((1, 1)), "attention_mask": np.ones((1, 1))})
    assert runner.calls == []


def test_session_wraps_execution_failure(fake_runner):
    def explode(feed):
        raise RuntimeError("kernel failure")

    runner = fake_runner(GENERATION_INPUTS, GENERATION_OUTPUTS, explode)
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)
    feeds = {name: np.ones((1, 1), dtype=np.int64) for name in GENERATION_INPUTS}

    with pytest.raises(RuntimeExecError, match="kernel failure"):
        session.run(feeds)


def test_session_output_shape(fake_runner):
    runner = fake_runner(
        EMBEDDING_INPUTS,
        EMBEDDING_OUTPUTS,
        echo_logits,
        output_shapes={"last_hidden_state": ("batch", "sequence", 384)},
    )
    session = InferenceSession(runner, input_names=EMBEDDING_INPUTS, output_names=EMBEDDING_OUTPUTS)
    assert session.output_shape("last_hidden_state") == ("batch", "sequence", 384)


def test_session_serializes_concurrent_runs(fake_runner):
    active = 0
    overlap = []
    guard = threading.Lock()

    def slow(feed):
        nonlocal active
        with guard:
            active += 1
            overlap.append(active)
        time.sleep(0.01)
        with guard:
            active -= 1
        return echo_logits(feed)

    runner = fake_runner(GENERATION_INPUTS, GENERATION_OUTPUTS, slow)
    session = InferenceSession(runner, input_names=GENERATION_INPUTS, output_names=GENERATION_OUTPUTS)
    feeds = {name: np.ones((1, 1), dtype=np.int64) for name in GENERATION_INPUTS}

    threads = [threading.Thread(target=session.run, args=(feeds,)) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(overlap) == 6
    assert max(overlap) == 1


def test_open_session_missing_graph_fails_fast(tmp_path):
    with pytest.raises(SessionInitError):
        open_session(
            tmp_path / "missing.onnx",
            input_names=EMBEDDING_INPUTS,
            output_names=EMBEDDING_OUTPUTS,
        )
