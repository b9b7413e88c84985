"""FastAPI routes for the local embedding and generation service."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import AsyncIterator, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from local_llm_core.api.models import (
    ChatChoice,
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    ErrorPayload,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelListResponse,
)
from local_llm_core.backends.base import EmbeddingBackend, GenerationBackend
from local_llm_core.config import get_settings
from local_llm_core.telemetry import InferenceMetrics, NoopInferenceMetrics

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build canonical error payload."""
    payload = ErrorResponse(error=ErrorPayload(code=code, message=message))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def get_embedding_backend(request: Request) -> EmbeddingBackend | None:
    return getattr(request.app.state, "embedding_backend", None)


def get_generation_backend(request: Request) -> GenerationBackend | None:
    return getattr(request.app.state, "generation_backend", None)


def get_inference_metrics(request: Request) -> InferenceMetrics:
    metrics = getattr(request.app.state, "inference_metrics", None)
    if metrics is None:
        return NoopInferenceMetrics()
    return metrics


def count_words(texts: list[str]) -> int:
    return sum(len(text.split()) for text in texts)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Service health and backend readiness."""
    settings = get_settings()
    embedding_backend = get_embedding_backend(request)
    generation_backend = get_generation_backend(request)
    embedding_ready = settings.embedding.enabled and embedding_backend is not None
    generation_ready = not settings.generation.enabled or generation_backend is not None
    return HealthResponse(
        status="ok" if embedding_ready and generation_ready else "error",
        service=settings.service_name,
        version=settings.service_version,
        embedding_backend=embedding_backend.name if embedding_backend is not None else "none",
        embedding_enabled=settings.embedding.enabled,
        generation_backend=generation_backend.name if generation_backend is not None else "none",
        generation_enabled=settings.generation.enabled,
    )


@router.get("/v1/models", response_model=ModelListResponse, tags=["Models"])
async def list_models(request: Request) -> ModelListResponse:
    """List advertised embedding and generation model aliases."""
    created = int(time.time())
    settings = get_settings()
    model_ids: list[str] = []

    embedding_backend = get_embedding_backend(request)
    if settings.embedding.enabled and embedding_backend is not None:
        model_ids.extend(embedding_backend.advertised_models())

    generation_backend = get_generation_backend(request)
    if settings.generation.enabled and generation_backend is not None:
        model_ids.extend(generation_backend.advertised_models())

    return ModelListResponse(data=[ModelInfo(id=model_id, created=created) for model_id in model_ids])


@router.post(
    "/v1/embeddings",
    response_model=EmbeddingResponse,
    responses=ERROR_RESPONSES,
    tags=["Embeddings"],
)
async def create_embeddings(request: Request, body: EmbeddingRequest):
    """OpenAI-compatible embeddings endpoint."""
    started_at = time.perf_counter()
    metrics = get_inference_metrics(request)
    inputs = body.resolve_input().texts()

    def record_metrics(status: str, input_count: int, prompt_tokens: int | None) -> None:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        metrics.record(
            operation="embeddings",
            model=body.model,
            status=status,
            input_count=input_count,
            tokens=prompt_tokens,
            duration_ms=elapsed_ms,
        )

    settings = get_settings()
    if not settings.embedding.enabled:
        record_metrics(status="upstream_error", input_count=0, prompt_tokens=None)
        return error_response(
            status_code=503,
            code="upstream_error",
            message="Embeddings are disabled.",
        )

    if settings.resolve_embedding_model(body.model) is None:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=f"Unsupported embedding model '{body.model}'.",
        )

    backend = get_embedding_backend(request)
    if backend is None:
        record_metrics(status="upstream_error", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=503,
            code="upstream_error",
            message="Embedding backend is unavailable.",
        )

    if not inputs:
        record_metrics(status="invalid_request", input_count=0, prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message="Embedding input list cannot be empty.",
        )
    if len(inputs) > settings.embedding.max_batch_size:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Embedding input batch size {len(inputs)} exceeds configured limit "
                f"{settings.embedding.max_batch_size}."
            ),
        )

    too_long_idx = next((idx for idx, text in enumerate(inputs) if len(text) > settings.embedding.max_input_chars), None)
    if too_long_idx is not None:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Embedding input at index {too_long_idx} exceeds configured character limit "
                f"{settings.embedding.max_input_chars}."
            ),
        )

    total_chars = sum(len(text) for text in inputs)
    if total_chars > settings.embedding.max_total_chars:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Total embedding input size {total_chars} exceeds configured character limit "
                f"{settings.embedding.max_total_chars}."
            ),
        )

    prompt_tokens = count_words(inputs)

    try:
        result = await asyncio.wait_for(
            backend.embed(inputs),
            timeout=settings.embedding.backend_timeout_seconds,
        )
    except TimeoutError:
        logger.warning("Embedding generation timed out")
        record_metrics(status="upstream_timeout", input_count=len(inputs), prompt_tokens=prompt_tokens)
        return error_response(
            status_code=504,
            code="upstream_timeout",
            message="Embedding backend timed out.",
        )
    except Exception:
        logger.exception("Embedding generation failed")
        record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
        return error_response(
            status_code=500,
            code="internal",
            message="Embedding generation failed.",
        )

    vectors = result.vectors
    if len(vectors) != len(inputs):
        record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
        return error_response(
            status_code=500,
            code="internal",
            message="Embedding backend returned mismatched vector count.",
        )

    expected_dimension = backend.dimension if backend.dimension > 0 else None
    for idx, vector in enumerate(vectors):
        if expected_dimension is not None and len(vector) != expected_dimension:
            record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
            return error_response(
                status_code=500,
                code="internal",
                message=(
                    f"Embedding backend returned invalid vector dimension at index {idx}: "
                    f"expected {expected_dimension}, got {len(vector)}."
                ),
            )
        try:
            if any(not math.isfinite(float(value)) for value in vector):
                raise ValueError("non-finite")
        except (TypeError, ValueError):
            record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
            return error_response(
                status_code=500,
                code="internal",
                message=f"Embedding backend returned non-finite vector values at index {idx}.",
            )

    items = [EmbeddingData(index=i, embedding=vector) for i, vector in enumerate(vectors)]
    record_metrics(status="ok", input_count=len(inputs), prompt_tokens=prompt_tokens)

    return EmbeddingResponse(
        model=body.model,
        data=items,
        usage=EmbeddingUsage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
    )


def sse_event(payload: str, event: str | None = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {payload}\n\n"


async def stream_generation(
    backend: GenerationBackend,
    *,
    prompt: str,
    max_tokens: int,
    timeout: float,
    model: str,
    record_metrics: Callable[[str], None],
) -> AsyncIterator[str]:
    """Relay per-step partial text from the worker thread as SSE events."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel = threading.Event()

    def on_partial(text: str) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, text)

    task = asyncio.create_task(
        asyncio.wait_for(
            backend.generate(prompt, max_tokens, on_partial=on_partial, cancel=cancel),
            timeout=timeout,
        )
    )
    task.add_done_callback(lambda _: queue.put_nowait(None))

    try:
        while (partial := await queue.get()) is not None:
            yield sse_event(ChatCompletionChunk(model=model, text=partial).model_dump_json())

        try:
            text = task.result()
        except TimeoutError:
            logger.warning("Streaming generation timed out")
            record_metrics("upstream_timeout")
            payload = ErrorResponse(error=ErrorPayload(code="upstream_timeout", message="Generation timed out."))
            yield sse_event(payload.model_dump_json(), event="error")
            return
        except Exception:
            logger.exception("Streaming generation failed")
            record_metrics("internal")
            payload = ErrorResponse(error=ErrorPayload(code="internal", message="Generation failed."))
            yield sse_event(payload.model_dump_json(), event="error")
            return

        record_metrics("ok")
        yield sse_event(ChatCompletionChunk(model=model, text=text, done=True).model_dump_json(), event="done")
    finally:
        if not task.done():
            cancel.set()
            task.cancel()


@router.post(
    "/v1/chat/completions",
    response_model=ChatCompletionResponse,
    responses=ERROR_RESPONSES,
    tags=["Generation"],
)
async def create_chat_completion(request: Request, body: ChatCompletionRequest):
    """Chat completion over the local greedy generator, optionally streamed as SSE."""
    started_at = time.perf_counter()
    metrics = get_inference_metrics(request)
    prompt = body.prompt()
    prompt_tokens = count_words([prompt])

    def record_metrics(status: str) -> None:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        metrics.record(
            operation="chat",
            model=body.model,
            status=status,
            input_count=len(body.messages),
            tokens=prompt_tokens,
            duration_ms=elapsed_ms,
        )

    settings = get_settings()
    if not settings.generation.enabled:
        record_metrics("upstream_error")
        return error_response(
            status_code=503,
            code="upstream_error",
            message="Text generation is disabled.",
        )

    if settings.resolve_generation_model(body.model) is None:
        record_metrics("invalid_request")
        return error_response(
            status_code=400,
            code="invalid_request",
            message=f"Unsupported generation model '{body.model}'.",
        )

    backend = get_generation_backend(request)
    if backend is None:
        record_metrics("upstream_error")
        return error_response(
            status_code=503,
            code="upstream_error",
            message="Generation backend is unavailable.",
        )

    max_tokens = settings.generation.default_max_tokens if body.max_tokens is None else body.max_tokens
    if max_tokens > settings.generation.max_tokens_limit:
        record_metrics("invalid_request")
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"max_tokens {max_tokens} exceeds configured limit "
                f"{settings.generation.max_tokens_limit}."
            ),
        )

    timeout = settings.generation.request_timeout_seconds
    wants_stream = body.stream or "text/event-stream" in request.headers.get("accept", "").lower()
    if wants_stream:
        return StreamingResponse(
            stream_generation(
                backend,
                prompt=prompt,
                max_tokens=max_tokens,
                timeout=timeout,
                model=body.model,
                record_metrics=record_metrics,
            ),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    try:
        text = await asyncio.wait_for(backend.generate(prompt, max_tokens), timeout=timeout)
    except TimeoutError:
        logger.warning("Generation timed out")
        record_metrics("upstream_timeout")
        return error_response(
            status_code=504,
            code="upstream_timeout",
            message="Generation backend timed out.",
        )
    except Exception:
        logger.exception("Generation failed")
        record_metrics("internal")
        return error_response(
            status_code=500,
            code="internal",
            message="Generation failed.",
        )

    record_metrics("ok")
    return ChatCompletionResponse(
        created=int(time.time()),
        model=body.model,
        choices=[ChatChoice(message=ChatMessage(role="assistant", content=text))],
    )
