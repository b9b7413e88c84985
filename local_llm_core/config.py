"""Runtime settings for local-llm-core."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_EMBEDDING_ALIASES = (
    "all-MiniLM-L6-v2",
    "sentence-transformers/all-MiniLM-L6-v2",
    "text-embedding-3-small",
)

DEFAULT_GENERATION_ALIASES = (
    "qwen2.5-0.5b-instruct",
    "Qwen/Qwen2.5-0.5B-Instruct",
)


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)


class ArtifactsConfig(BaseModel):
    """Local artifact cache settings."""

    cache_dir: Path = Field(default=Path("~/.cache/local-llm-core"))
    download_retries: int = Field(default=3, ge=1, le=10)
    download_retry_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    user_agent: str = Field(default="local-llm-core/0.1")


class EmbeddingConfig(BaseModel):
    """Embedding backend settings."""

    enabled: bool = Field(default=True)
    backend: Literal["hash", "onnx"] = Field(default="hash")
    model_name: str = Field(default="all-MiniLM-L6-v2")
    dimension: int = Field(default=384, ge=8, le=8192)
    max_length: int = Field(default=128, ge=2, le=8192)
    model_urls: list[str] = Field(
        default_factory=lambda: [
            "https://huggingface.co/Xenova/all-MiniLM-L6-v2/resolve/main/onnx/model.onnx",
            "https://huggingface.co/Xenova/all-MiniLM-L6-v2/resolve/main/model.onnx",
            "https://huggingface.co/onnx-community/all-MiniLM-L6-v2/resolve/main/model.onnx",
        ]
    )
    vocab_urls: list[str] = Field(
        default_factory=lambda: [
            "https://huggingface.co/sentence-transformers/all-MiniLM-L6-v2/resolve/main/vocab.txt",
        ]
    )
    providers: list[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    max_batch_size: int = Field(default=64, ge=1, le=2048)
    max_input_chars: int = Field(default=32768, ge=1, le=1_000_000)
    max_total_chars: int = Field(default=262144, ge=1, le=5_000_000)
    backend_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)


class GenerationConfig(BaseModel):
    """Text generation backend settings."""

    enabled: bool = Field(default=False)
    backend: Literal["onnx"] = Field(default="onnx")
    model_name: str = Field(default="qwen2.5-0.5b-instruct")
    max_context: int = Field(default=512, ge=1, le=32768)
    default_max_tokens: int = Field(default=64, ge=0, le=8192)
    max_tokens_limit: int = Field(default=2048, ge=0, le=32768)
    # The graph must take exactly input_ids, attention_mask and position_ids.
    # These onnx-community exports also declare past_key_values.* inputs, which
    # open_session rejects at startup. Point model_urls at a cache-free export,
    # such as optimum `--task text-generation` (not `text-generation-with-past`).
    model_urls: list[str] = Field(
        default_factory=lambda: [
            "https://huggingface.co/onnx-community/Qwen2.5-0.5B-Instruct/resolve/main/onnx/model_fp32.onnx",
            "https://huggingface.co/onnx-community/Qwen2.5-0.5B-Instruct/resolve/main/onnx/model_fp16.onnx",
        ]
    )
    tokenizer_urls: list[str] = Field(
        default_factory=lambda: [
            "https://huggingface.co/Qwen/Qwen2.5-0.5B-Instruct/resolve/main/tokenizer.json",
        ]
    )
    providers: list[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    download_timeout_seconds: float = Field(default=600.0, gt=0.0)
    request_timeout_seconds: float = Field(default=120.0, gt=0.0, le=3600.0)


class TelemetryConfig(BaseModel):
    """OpenTelemetry configuration."""

    enabled: bool = Field(default=False)
    otlp_endpoint: str = Field(default="http://127.0.0.1:4318")
    otlp_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    metrics_export_interval_ms: int = Field(default=5000, ge=250, le=60000)
    sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    otlp_headers: dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    """Service settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_LLM_CORE_",
        env_nested_delimiter="__",
    )

    service_name: str = Field(default="local-llm-core")
    service_version: str = Field(default="0.1.0")

    server: ServerConfig = Field(default_factory=ServerConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    def resolve_embedding_model(self, requested_model: str) -> str | None:
        """Map accepted public aliases to the configured embedding model."""
        return _resolve_alias(requested_model, self.embedding.model_name, DEFAULT_EMBEDDING_ALIASES)

    def resolve_generation_model(self, requested_model: str) -> str | None:
        """Map accepted public aliases to the configured generation model."""
        return _resolve_alias(requested_model, self.generation.model_name, DEFAULT_GENERATION_ALIASES)

    def public_embedding_models(self) -> list[str]:
        """Embedding model identifiers advertised to clients."""
        return _with_model(DEFAULT_EMBEDDING_ALIASES, self.embedding.model_name)

    def public_generation_models(self) -> list[str]:
        """Generation model identifiers advertised to clients."""
        return _with_model(DEFAULT_GENERATION_ALIASES, self.generation.model_name)


def _resolve_alias(requested_model: str, configured: str, aliases: tuple[str, ...]) -> str | None:
    if not requested_model or requested_model == configured or requested_model in aliases:
        return configured
    return None


def _with_model(aliases: tuple[str, ...], model_name: str) -> list[str]:
    values = list(aliases)
    if model_name not in values:
        values.append(model_name)
    return values


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (test helper)."""
    global _settings
    _settings = None
