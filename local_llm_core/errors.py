"""Error taxonomy for the local inference core."""

from __future__ import annotations


class InferenceError(Exception):
    """Base class for inference core failures."""


class VocabularyLoadError(InferenceError):
    """Vocabulary or tokenizer file is missing or malformed."""


class SessionInitError(InferenceError):
    """Graph failed to load or does not expose the declared input/output names."""


class ShapeError(InferenceError):
    """An output tensor has an unexpected rank or shape."""


class EncodingDegenerate(InferenceError):
    """A text input produced an empty token sequence."""


class RuntimeExecError(InferenceError):
    """The graph execution call failed."""


class ArtifactError(Exception):
    """An artifact could not be fetched from any mirror."""
