from __future__ import annotations

from fastapi.testclient import TestClient

from local_llm_core.main import create_app


class FakeInferenceMetrics:
    def __init__(self) -> None:
        self.records: list[dict[str, object]] = []

    def record(
        self,
        *,
        operation: str,
        model: str,
        status: str,
        input_count: int,
        tokens: int | None,
        duration_ms: float,
    ) -> None:
        self.records.append(
            {
                "operation": operation,
                "model": model,
                "status": status,
                "input_count": input_count,
                "tokens": tokens,
                "duration_ms": duration_ms,
            }
        )


def test_embeddings_metrics_recorded_success():
    with TestClient(create_app()) as client:
        fake = FakeInferenceMetrics()
        client.app.state.inference_metrics = fake

        response = client.post(
            "/v1/embeddings",
            json={"model": "all-MiniLM-L6-v2", "input": "hello world"},
        )

        assert response.status_code == 200
        assert len(fake.records) == 1
        record = fake.records[0]
        assert record["operation"] == "embeddings"
        assert record["model"] == "all-MiniLM-L6-v2"
        assert record["status"] == "ok"
        assert record["input_count"] == 1
        assert record["tokens"] == 2
        assert isinstance(record["duration_ms"], float)
        assert record["duration_ms"] >= 0.0


def test_embeddings_metrics_recorded_invalid_model():
    with TestClient(create_app()) as client:
        fake = FakeInferenceMetrics()
        client.app.state.inference_metrics = fake

        response = client.post(
            "/v1/embeddings",
            json={"model": "unsupported-model", "input": "hello world"},
        )

        assert response.status_code == 400
        assert len(fake.records) == 1
        record = fake.records[0]
        assert record["model"] == "unsupported-model"
        assert record["status"] == "invalid_request"
        assert record["input_count"] == 1
        assert record["tokens"] is None


def test_chat_metrics_recorded_when_disabled():
    with TestClient(create_app()) as client:
        fake = FakeInferenceMetrics()
        client.app.state.inference_metrics = fake

        response = client.post(
            "/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "the cat sat"}]},
        )

        assert response.status_code == 503
        record = fake.records[0]
        assert record["operation"] == "chat"
        assert record["status"] == "upstream_error"
        assert record["input_count"] == 1
        assert record["tokens"] == 3
