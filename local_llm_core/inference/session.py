"""ONNX Runtime session wrapper bound to a fixed input/output contract."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

import numpy as np

from local_llm_core.errors import RuntimeExecError, SessionInitError

logger = logging.getLogger(__name__)

EMBEDDING_INPUTS = ("input_ids", "attention_mask", "token_type_ids")
EMBEDDING_OUTPUTS = ("last_hidden_state",)
GENERATION_INPUTS = ("input_ids", "attention_mask", "position_ids")
GENERATION_OUTPUTS = ("logits",)


class GraphRunner(Protocol):
    """Subset of ``onnxruntime.InferenceSession`` used here."""

    def get_inputs(self) -> Sequence[Any]: ...

    def get_outputs(self) -> Sequence[Any]: ...

    def run(self, output_names: list[str] | None, input_feed: dict[str, np.ndarray]) -> list[Any]: ...


class InferenceSession:
    """One loaded graph, validated once and shared by every call.

    ``run`` calls are serialized through a per-session lock, so one instance may
    be used from concurrent request handlers.
    """

    def __init__(
        self,
        runner: GraphRunner,
        *,
        input_names: Sequence[str],
        output_names: Sequence[str],
        label: str = "graph",
    ) -> None:
        self.label = label
        self.input_names = tuple(input_names)
        self.output_names = tuple(output_names)
        self._runner = runner
        self._lock = threading.Lock()
        self._output_shapes = self._validate()

    def _validate(self) -> dict[str, tuple[Any, ...]]:
        graph_inputs = [item.name for item in self._runner.get_inputs()]
        graph_outputs = {item.name: tuple(getattr(item, "shape", None) or ()) for item in self._runner.get_outputs()}

        missing_inputs = [name for name in self.input_names if name not in graph_inputs]
        undeclared_inputs = [name for name in graph_inputs if name not in self.input_names]
        missing_outputs = [name for name in self.output_names if name not in graph_outputs]
        if missing_inputs or undeclared_inputs or missing_outputs:
            raise SessionInitError(
                f"{self.label}: graph names do not match the declared contract "
                f"(missing inputs {missing_inputs}, undeclared inputs {undeclared_inputs}, "
                f"missing outputs {missing_outputs})"
            )
        return {name: graph_outputs[name] for name in self.output_names}

    def output_shape(self, name: str) -> tuple[Any, ...]:
        """Declared graph shape of an output; symbolic dims are strings or None."""
        return self._output_shapes[name]

    def run(self, feeds: Mapping[str, np.ndarray]) -> dict[str, np.ndarray]:
        try:
            input_feed = {name: feeds[name] for name in self.input_names}
        except KeyError as exc:
            raise RuntimeExecError(f"{self.label}: missing input tensor {exc.args[0]!r}") from exc

        try:
            with self._lock:
                outputs = self._runner.run(list(self.output_names), input_feed)
        except Exception as exc:
            raise RuntimeExecError(f"{self.label}: execution failed: {exc}") from exc

        if len(outputs) != len(self.output_names):
            raise RuntimeExecError(
                f"{self.label}: expected {len(self.output_names)} outputs, got {len(outputs)}"
            )
        return {name: np.asarray(value) for name, value in zip(self.output_names, outputs)}


def open_session(
    model_path: str | Path,
    *,
    input_names: Sequence[str],
    output_names: Sequence[str],
    providers: Sequence[str] | None = None,
    label: str = "graph",
) -> InferenceSession:
    """Load an ONNX graph and bind it to the declared names."""
    import onnxruntime as ort

    model_path = Path(model_path)
    available = ort.get_available_providers()
    requested = [name for name in (providers or ["CPUExecutionProvider"]) if name in available]
    if not requested:
        requested = ["CPUExecutionProvider"]

    logger.info("Loading %s graph from %s (providers=%s)", label, model_path, requested)
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    try:
        runner = ort.InferenceSession(str(model_path), sess_options=options, providers=requested)
    except Exception as exc:
        raise SessionInitError(f"{label}: cannot load graph {model_path}: {exc}") from exc

    session = InferenceSession(runner, input_names=input_names, output_names=output_names, label=label)
    logger.info(
        "%s graph ready: inputs=%s outputs=%s active providers=%s",
        label,
        list(session.input_names),
        list(session.output_names),
        runner.get_providers(),
    )
    return session
