from __future__ import annotations

import threading
import time

import httpx
import pytest

from local_llm_core.artifacts import (
    EMBEDDING_MODEL,
    EMBEDDING_VOCAB,
    ArtifactProvider,
    ArtifactSpec,
    build_specs,
)
from local_llm_core.errors import ArtifactError


def make_provider(
    tmp_path,
    handler,
    urls=("https://mirror-a/model.onnx", "https://mirror-b/model.onnx"),
    retries=1,
    retry_delay_seconds=0.0,
):
    specs = {"model": ArtifactSpec("models/model.onnx", tuple(urls), timeout_seconds=5.0)}
    return ArtifactProvider(
        tmp_path / "cache",
        specs,
        retries=retries,
        retry_delay_seconds=retry_delay_seconds,
        transport=httpx.MockTransport(handler),
    )


def test_resolve_falls_back_to_next_mirror(tmp_path):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        if request.url.host == "mirror-a":
            return httpx.Response(404)
        return httpx.Response(200, content=b"graph-bytes")

    provider = make_provider(tmp_path, handler)

    path = provider.resolve("model")

    assert path == tmp_path / "cache" / "models" / "model.onnx"
    assert path.read_bytes() == b"graph-bytes"
    assert seen == ["mirror-a", "mirror-b"]
    assert not path.with_name("model.onnx.part").exists()


def test_resolve_sends_user_agent(tmp_path):
    agents: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        agents.append(request.headers["user-agent"])
        return httpx.Response(200, content=b"x")

    make_provider(tmp_path, handler).resolve("model")

    assert agents == ["local-llm-core/0.1"]


def test_resolve_retries_all_mirrors_then_fails(tmp_path):
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(503)

    provider = make_provider(tmp_path, handler, retries=2)

    with pytest.raises(ArtifactError):
        provider.resolve("model")

    assert len(calls) == 4
    target = provider.path_for("model")
    assert not target.exists()
    assert not target.with_name("model.onnx.part").exists()


def test_resolve_waits_between_retry_rounds(tmp_path, monkeypatch):
    delays: list[float] = []
    monkeypatch.setattr("local_llm_core.artifacts.time.sleep", delays.append)
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        return httpx.Response(503)

    provider = make_provider(tmp_path, handler, retries=3, retry_delay_seconds=0.5)

    with pytest.raises(ArtifactError):
        provider.resolve("model")

    assert len(calls) == 6
    # No pause between mirrors of one round, none after the last round.
    assert delays == [0.5, 1.0]


def test_resolve_success_does_not_wait(tmp_path, monkeypatch):
    delays: list[float] = []
    monkeypatch.setattr("local_llm_core.artifacts.time.sleep", delays.append)

    provider = make_provider(
        tmp_path, lambda request: httpx.Response(200, content=b"x"), retries=3, retry_delay_seconds=0.5
    )
    provider.resolve("model")

    assert delays == []


def test_resolve_skips_download_when_installed(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no download expected")

    provider = make_provider(tmp_path, handler)
    target = provider.path_for("model")
    target.parent.mkdir(parents=True)
    target.write_bytes(b"cached")

    assert provider.resolve("model").read_bytes() == b"cached"


def test_concurrent_first_use_downloads_once(tmp_path):
    count = 0
    lock = threading.Lock()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal count
        with lock:
            count += 1
        time.sleep(0.05)
        return httpx.Response(200, content=b"graph")

    provider = make_provider(tmp_path, handler)
    results: list[bytes] = []

    def worker() -> None:
        results.append(provider.resolve("model").read_bytes())

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert count == 1
    assert results == [b"graph"] * 5


def test_unknown_key(tmp_path):
    provider = make_provider(tmp_path, lambda request: httpx.Response(200))
    with pytest.raises(ArtifactError, match="unknown artifact"):
        provider.resolve("runtime")


def test_missing_artifact_without_urls(tmp_path):
    provider = make_provider(tmp_path, lambda request: httpx.Response(200), urls=())
    with pytest.raises(ArtifactError, match="no download URLs"):
        provider.resolve("model")


def test_build_specs_layout():
    specs = build_specs(embedding_model_urls=["https://a/model.onnx"])
    assert specs[EMBEDDING_MODEL].relative_path == "embedding/model.onnx"
    assert specs[EMBEDDING_MODEL].urls == ("https://a/model.onnx",)
    assert specs[EMBEDDING_VOCAB].urls == ()
