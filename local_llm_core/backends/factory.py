"""Backend factories."""

from __future__ import annotations

from local_llm_core.artifacts import (
    EMBEDDING_MODEL,
    EMBEDDING_VOCAB,
    GENERATION_MODEL,
    GENERATION_TOKENIZER,
    ArtifactProvider,
    build_specs,
)
from local_llm_core.backends.base import EmbeddingBackend, GenerationBackend
from local_llm_core.backends.hashing import HashEmbeddingBackend
from local_llm_core.backends.onnx_embedding import OnnxEmbeddingBackend
from local_llm_core.backends.onnx_generation import OnnxGenerationBackend
from local_llm_core.config import Settings
from local_llm_core.inference.generation import GreedyGenerator
from local_llm_core.inference.session import (
    EMBEDDING_INPUTS,
    EMBEDDING_OUTPUTS,
    GENERATION_INPUTS,
    GENERATION_OUTPUTS,
    open_session,
)
from local_llm_core.inference.tokenizers import DirectLookupTokenizer, WordPieceTokenizer
from local_llm_core.inference.vocabulary import load_tokenizer_json, load_wordpiece_vocabulary


def create_artifact_provider(settings: Settings) -> ArtifactProvider:
    """Build the artifact provider from settings."""
    specs = build_specs(
        embedding_model_urls=settings.embedding.model_urls,
        embedding_vocab_urls=settings.embedding.vocab_urls,
        generation_model_urls=settings.generation.model_urls,
        generation_tokenizer_urls=settings.generation.tokenizer_urls,
        generation_timeout_seconds=settings.generation.download_timeout_seconds,
    )
    return ArtifactProvider(
        settings.artifacts.cache_dir,
        specs,
        retries=settings.artifacts.download_retries,
        retry_delay_seconds=settings.artifacts.download_retry_delay_seconds,
        user_agent=settings.artifacts.user_agent,
    )


def create_embedding_backend(settings: Settings, artifacts: ArtifactProvider) -> EmbeddingBackend:
    """Build embedding backend from settings."""
    aliases = settings.public_embedding_models()

    if settings.embedding.backend == "onnx":
        vocabulary = load_wordpiece_vocabulary(artifacts.resolve(EMBEDDING_VOCAB))
        session = open_session(
            artifacts.resolve(EMBEDDING_MODEL),
            input_names=EMBEDDING_INPUTS,
            output_names=EMBEDDING_OUTPUTS,
            providers=settings.embedding.providers,
            label="embedding",
        )
        return OnnxEmbeddingBackend(
            model_name=settings.embedding.model_name,
            aliases=aliases,
            tokenizer=WordPieceTokenizer(vocabulary, max_length=settings.embedding.max_length),
            session=session,
        )

    return HashEmbeddingBackend(
        model_name=settings.embedding.model_name,
        aliases=aliases,
        dimension=settings.embedding.dimension,
    )


def create_generation_backend(settings: Settings, artifacts: ArtifactProvider) -> GenerationBackend:
    """Build generation backend from settings."""
    vocabulary = load_tokenizer_json(artifacts.resolve(GENERATION_TOKENIZER))
    session = open_session(
        artifacts.resolve(GENERATION_MODEL),
        input_names=GENERATION_INPUTS,
        output_names=GENERATION_OUTPUTS,
        providers=settings.generation.providers,
        label="generation",
    )
    generator = GreedyGenerator(
        session,
        DirectLookupTokenizer(vocabulary),
        max_context=settings.generation.max_context,
    )
    return OnnxGenerationBackend(
        model_name=settings.generation.model_name,
        aliases=settings.public_generation_models(),
        generator=generator,
    )
