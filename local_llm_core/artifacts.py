"""On-demand artifact download with mirror fallback and atomic install."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import httpx

from local_llm_core.errors import ArtifactError

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "embedding-model"
EMBEDDING_VOCAB = "embedding-vocab"
GENERATION_MODEL = "generation-model"
GENERATION_TOKENIZER = "generation-tokenizer"


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    """Where an artifact is installed and the mirrors it can be fetched from."""

    relative_path: str
    urls: tuple[str, ...]
    timeout_seconds: float = 180.0


class ArtifactProvider:
    """Resolves artifact keys to local files, downloading them on first use.

    Concurrent first requests for the same key share a single download; later
    callers find the installed file.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        specs: Mapping[str, ArtifactSpec],
        *,
        retries: int = 3,
        retry_delay_seconds: float = 1.0,
        user_agent: str = "local-llm-core/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self._specs = dict(specs)
        self._retries = max(1, retries)
        self._retry_delay = max(0.0, retry_delay_seconds)
        self._user_agent = user_agent
        self._transport = transport
        self._guard = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def path_for(self, key: str) -> Path:
        return self.cache_dir / self._spec(key).relative_path

    def resolve(self, key: str) -> Path:
        """Return the local path for ``key``, downloading it if absent."""
        spec = self._spec(key)
        target = self.cache_dir / spec.relative_path
        if target.is_file():
            return target

        with self._lock_for(key):
            if target.is_file():
                return target
            target.parent.mkdir(parents=True, exist_ok=True)
            self._download(key, spec, target)
        return target

    def _spec(self, key: str) -> ArtifactSpec:
        try:
            return self._specs[key]
        except KeyError:
            raise ArtifactError(f"unknown artifact '{key}'") from None

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._key_locks.setdefault(key, threading.Lock())

    def _download(self, key: str, spec: ArtifactSpec, target: Path) -> None:
        if not spec.urls:
            raise ArtifactError(f"artifact '{key}' is missing at {target} and has no download URLs")

        last_error: Exception | None = None
        with httpx.Client(
            headers={"User-Agent": self._user_agent},
            follow_redirects=True,
            timeout=spec.timeout_seconds,
            transport=self._transport,
        ) as client:
            for attempt in range(1, self._retries + 1):
                for index, url in enumerate(spec.urls, start=1):
                    logger.info(
                        "Downloading %s: %s (mirror %d/%d, attempt %d/%d)",
                        key,
                        url,
                        index,
                        len(spec.urls),
                        attempt,
                        self._retries,
                    )
                    try:
                        fetch_to(client, url, target)
                    except (httpx.HTTPError, OSError) as exc:
                        logger.warning("Download of %s from %s failed: %s", key, url, exc)
                        last_error = exc
                        continue
                    return
                if attempt < self._retries and self._retry_delay:
                    # Linear backoff between rounds over the mirror list.
                    time.sleep(self._retry_delay * attempt)

        raise ArtifactError(f"could not fetch artifact '{key}' from {len(spec.urls)} mirror(s)") from last_error


def fetch_to(client: httpx.Client, url: str, target: Path) -> None:
    """Stream ``url`` into ``target`` via a ``.part`` file renamed on success."""
    partial = target.with_name(target.name + ".part")
    try:
        with client.stream("GET", url) as response:
            response.raise_for_status()
            with partial.open("wb") as handle:
                for chunk in response.iter_bytes():
                    handle.write(chunk)
        partial.replace(target)
    finally:
        partial.unlink(missing_ok=True)


def build_specs(
    *,
    embedding_model_urls: Sequence[str] = (),
    embedding_vocab_urls: Sequence[str] = (),
    generation_model_urls: Sequence[str] = (),
    generation_tokenizer_urls: Sequence[str] = (),
    generation_timeout_seconds: float = 600.0,
) -> dict[str, ArtifactSpec]:
    """Artifact table for the embedding and generation models."""
    return {
        EMBEDDING_MODEL: ArtifactSpec("embedding/model.onnx", tuple(embedding_model_urls), 180.0),
        EMBEDDING_VOCAB: ArtifactSpec("embedding/vocab.txt", tuple(embedding_vocab_urls), 60.0),
        GENERATION_MODEL: ArtifactSpec(
            "generation/model.onnx", tuple(generation_model_urls), generation_timeout_seconds
        ),
        GENERATION_TOKENIZER: ArtifactSpec("generation/tokenizer.json", tuple(generation_tokenizer_urls), 120.0),
    }
