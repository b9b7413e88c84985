"""OpenAI-compatible API models for local-llm-core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from pydantic import BaseModel, Field


@dataclass(frozen=True, slots=True)
class SingleText:
    """Embedding request carrying one string."""

    text: str

    def texts(self) -> list[str]:
        return [self.text]


@dataclass(frozen=True, slots=True)
class TextList:
    """Embedding request carrying a list of strings."""

    items: tuple[str, ...]

    def texts(self) -> list[str]:
        return list(self.items)


EmbeddingInput = Union[SingleText, TextList]


class EmbeddingRequest(BaseModel):
    """OpenAI-compatible embeddings request."""

    model: str = "all-MiniLM-L6-v2"
    input: str | list[str]
    encoding_format: Literal["float"] = "float"

    def resolve_input(self) -> EmbeddingInput:
        """Resolve the string-or-list payload into its tagged variant."""
        if isinstance(self.input, str):
            return SingleText(self.input)
        return TextList(tuple(self.input))


class EmbeddingData(BaseModel):
    """Embedding item."""

    object: Literal["embedding"] = "embedding"
    index: int
    embedding: list[float]


class EmbeddingUsage(BaseModel):
    """Embedding usage information."""

    prompt_tokens: int
    total_tokens: int


class EmbeddingResponse(BaseModel):
    """OpenAI-compatible embeddings response."""

    object: Literal["list"] = "list"
    model: str
    data: list[EmbeddingData]
    usage: EmbeddingUsage


class ChatMessage(BaseModel):
    """Chat message."""

    role: str
    content: str


class ChatCompletionRequest(BaseModel):
    """OpenAI-compatible chat completion request."""

    model: str = "qwen2.5-0.5b-instruct"
    messages: list[ChatMessage]
    max_tokens: int | None = Field(default=None, ge=0)
    stream: bool = False

    def prompt(self) -> str:
        """User messages, each followed by a newline."""
        return "".join(f"{message.content}\n" for message in self.messages if message.role.lower() == "user")


class ChatChoice(BaseModel):
    """Chat completion choice."""

    index: int = 0
    message: ChatMessage
    finish_reason: Literal["stop"] = "stop"


class ChatCompletionResponse(BaseModel):
    """OpenAI-compatible chat completion response."""

    id: str = "chatcmpl-local"
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[ChatChoice]


class ChatCompletionChunk(BaseModel):
    """One streamed generation step carrying the full text decoded so far."""

    id: str = "chatcmpl-local"
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    model: str
    text: str
    done: bool = False


class ModelInfo(BaseModel):
    """Model item for /v1/models."""

    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "local-llm-core"


class ModelListResponse(BaseModel):
    """Model listing response."""

    object: Literal["list"] = "list"
    data: list[ModelInfo]


class HealthResponse(BaseModel):
    """Health response."""

    status: Literal["ok", "error"] = "error"
    service: str = "local-llm-core"
    version: str = "0.1.0"
    embedding_backend: str = "none"
    embedding_enabled: bool = False
    generation_backend: str = "none"
    generation_enabled: bool = False


class ErrorPayload(BaseModel):
    """Canonical error payload."""

    code: Literal[
        "invalid_request",
        "upstream_error",
        "upstream_timeout",
        "internal",
    ]
    message: str


class ErrorResponse(BaseModel):
    """Canonical error response."""

    error: ErrorPayload
