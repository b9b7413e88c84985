"""Application entrypoint for local-llm-core."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from local_llm_core.api.routes import router
from local_llm_core.backends.factory import (
    create_artifact_provider,
    create_embedding_backend,
    create_generation_backend,
)
from local_llm_core.config import get_settings
from local_llm_core.telemetry import TelemetryRuntime, setup_telemetry, shutdown_telemetry


def configure_logging() -> None:
    """Configure process logging."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Resolve artifacts and attach embedding/generation backends.

    Vocabulary and session failures propagate so startup fails fast.
    """
    settings = get_settings()
    telemetry_runtime = TelemetryRuntime()

    try:
        telemetry_runtime = setup_telemetry(app, settings)
    except Exception:
        logging.exception("OpenTelemetry initialization failed; continuing without telemetry")

    app.state.telemetry_runtime = telemetry_runtime
    app.state.inference_metrics = telemetry_runtime.inference_metrics

    artifacts = create_artifact_provider(settings)
    app.state.artifacts = artifacts

    if settings.embedding.enabled:
        app.state.embedding_backend = create_embedding_backend(settings, artifacts)
    else:
        app.state.embedding_backend = None

    if settings.generation.enabled:
        app.state.generation_backend = create_generation_backend(settings, artifacts)
    else:
        app.state.generation_backend = None

    try:
        yield
    finally:
        try:
            shutdown_telemetry(app, telemetry_runtime)
        except Exception:
            logging.exception("OpenTelemetry shutdown failed")


def create_app() -> FastAPI:
    """Build FastAPI app."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title="Local LLM Core",
        description="On-device embedding and text generation server",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Run uvicorn server."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.server.port))
    uvicorn.run(
        "local_llm_core.main:app",
        host=settings.server.host,
        port=port,
        workers=1,
    )


if __name__ == "__main__":
    run()
