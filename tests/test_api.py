"""Tests for API routes."""
import pytest
from fastapi.testclient import TestClient

from conftest import FakeEngine, FakeExtractProvider, FakeSearchProvider, hit
from deepresearch.agents.orchestrator import ResearchOrchestrator
from deepresearch.api.deps import get_orchestrator
from deepresearch.main import app


def fake_orchestrator() -> ResearchOrchestrator:
    return ResearchOrchestrator(
        engine=FakeEngine(fragments=["Final ", "answer."]),
        search_provider=FakeSearchProvider(default=[hit("https://example.com/a", snippet="about a")]),
        extract_provider=FakeExtractProvider(),
        extract_timeout=2.0,
    )


@pytest.fixture
def client():
    app.dependency_overrides[get_orchestrator] = fake_orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "deepresearch"


def test_run_research_returns_finish_payload(client):
    response = client.post("/api/research", json={"query": "what is a", "maxDepth": 1, "timeLimit": 30})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["report"] == "Final answer."
    assert data["iterations"] == 1
    assert data["sourceCount"] == 1
    assert data["sources"][0]["url"] == "https://example.com/a"


def test_invalid_request_is_reported_in_payload(client):
    response = client.post("/api/research", json={"query": "  "})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "failed"
    assert data["sourceCount"] == 0


def test_stream_research_emits_sse_events(client):
    with client.stream("POST", "/api/research/stream", json={"query": "what is a", "maxDepth": 1}) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = "".join(response.iter_text())

    assert "event: progress-init" in body
    assert "event: source-delta" in body
    assert "event: text-delta" in body
    assert body.index("event: progress-init") < body.index("event: source-delta") < body.index("event: finish")
    assert body.count("event: finish") == 1
