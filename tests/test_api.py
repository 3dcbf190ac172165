"""
Tests for the FastAPI endpoints.

These tests run the application against an in-memory candidate store and a
deterministic embedder, without requiring Weaviate, a model download or an
OpenAI key.
"""

import json

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.models import match_quality
from api.services.evaluation import EvaluationService
from api.services.hybrid_search import CandidateSearchService
from api.services.telemetry import InMemoryTelemetryStore
from index.store import InMemoryCandidateStore

from conftest import BagOfWordsEmbedder

VALID_CANDIDATES = [
    {
        "id": "c1",
        "name": "Alice Example",
        "email": "alice@example.com",
        "title": "Frontend Developer",
        "company": "Acme",
        "location": "Berlin",
        "remote_preference": "remote",
        "years_experience": 6,
        "salary_expectation": 120000,
        "skills": ["React", "AWS", "TypeScript"],
        "summary": "Builds web applications",
    },
    {
        "id": "c2",
        "name": "Bob Example",
        "email": "bob@example.com",
        "title": "Frontend Developer",
        "company": "Globex",
        "location": "Paris",
        "years_experience": 1,
        "skills": ["React"],
        "summary": "Builds web applications",
    },
]


@pytest.fixture
def client():
    embedder = BagOfWordsEmbedder()
    service = CandidateSearchService(
        store=InMemoryCandidateStore(),
        embedder=embedder,
        evaluation=EvaluationService(InMemoryTelemetryStore(), embedder),
    )
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def loaded_client(client):
    response = client.post("/ingest", json={"candidates": VALID_CANDIDATES})
    assert response.status_code == 200
    return client


def search(client, **body):
    body.setdefault("job_description", "Senior React developer with AWS experience")
    body.setdefault("use_reranking", False)
    return client.post("/search/candidates", json=body)


def test_root_endpoint(client):
    """Test the root endpoint returns API information."""
    response = client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert "name" in data
    assert "endpoints" in data
    assert "Candidate Retrieval Service" in data["name"]
    assert "POST /search/candidates" in data["endpoints"]


def test_ingest_endpoint_validation(client):
    """Test the ingest endpoint with invalid data."""
    response = client.post("/ingest", json={"invalid": "data"})
    assert response.status_code == 422

    response = client.post("/ingest", json={"candidates": [{"invalid": "candidate"}]})
    assert response.status_code == 422


def test_ingest_valid_data(client):
    response = client.post("/ingest", json={"candidates": VALID_CANDIDATES})
    assert response.status_code == 200

    data = response.json()
    assert data["candidates_loaded"] == 2
    assert data["candidates_index_size"] == 2


def test_ingest_embeds_all_fields_in_one_batch():
    embedder = BagOfWordsEmbedder()
    service = CandidateSearchService(
        store=InMemoryCandidateStore(),
        embedder=embedder,
        evaluation=EvaluationService(InMemoryTelemetryStore()),
    )

    with TestClient(create_app(service)) as test_client:
        response = test_client.post("/ingest", json={"candidates": VALID_CANDIDATES})

    assert response.status_code == 200
    assert embedder.batch_sizes == [8]


def test_ingest_is_an_upsert(loaded_client):
    response = loaded_client.post("/ingest", json={"candidates": VALID_CANDIDATES[:1]})
    assert response.json()["candidates_index_size"] == 2


def test_ingest_from_json(client, tmp_path):
    path = tmp_path / "candidates.json"
    path.write_text(json.dumps(VALID_CANDIDATES))

    response = client.post("/ingest/from-json", params={"candidates_file": str(path)})
    assert response.status_code == 200
    assert response.json()["candidates_loaded"] == 2

    response = client.post(
        "/ingest/from-json", params={"candidates_file": str(tmp_path / "missing.json")}
    )
    assert response.status_code == 404

    path.write_text("not json")
    response = client.post("/ingest/from-json", params={"candidates_file": str(path)})
    assert response.status_code == 400


def test_search_candidates_validation(client):
    """Test candidate search endpoint body validation."""
    response = client.post("/search/candidates", json={})
    assert response.status_code == 422

    response = client.post(
        "/search/candidates", json={"job_description": "React", "unknown": True}
    )
    assert response.status_code == 422


def test_search_candidates(loaded_client):
    response = search(loaded_client)
    assert response.status_code == 200

    data = response.json()
    assert data["error"] is False
    assert data["retrieval_method"] == "hybrid"
    assert data["query_id"]
    assert [r["candidate"]["id"] for r in data["results"]] == ["c1", "c2"]

    top = data["results"][0]
    assert top["retrieval_method"] == "hybrid"
    assert top["match_quality"] == match_quality(top["scores"]["match"])
    assert set(top["scores"]) == {
        "match", "profile", "skills", "experience", "resume", "keyword", "fused", "rerank",
    }
    assert top["context_chunks"]
    assert "embeddings" not in top["candidate"]
    assert data["summary"]["total_candidates"] == 2


def test_search_with_filters(loaded_client):
    response = search(loaded_client, location="Berlin", remote=False, required_skills=["react"])
    assert [r["candidate"]["id"] for r in response.json()["results"]] == ["c1"]


def test_invalid_search_returns_error_outcome(loaded_client):
    response = search(loaded_client, job_description="   ")
    assert response.status_code == 200

    data = response.json()
    assert data["error"] is True
    assert data["results"] == []
    assert data["summary"]["total_candidates"] == 0


def test_search_without_reranker_warns(loaded_client):
    response = search(loaded_client, use_reranking=True)
    assert any("Reranker not configured" in w for w in response.json()["warnings"])


def test_feedback_flow(loaded_client):
    query_id = search(loaded_client).json()["query_id"]

    response = loaded_client.post(
        "/feedback",
        json={"query_id": query_id, "rating": 4, "relevant_candidates": ["c1"]},
    )
    assert response.status_code == 200
    assert response.json() == {"query_id": query_id, "accepted": True}

    analytics = loaded_client.get("/analytics").json()
    assert analytics["total_queries"] == 1
    assert analytics["average_rating"] == pytest.approx(4.0)
    assert analytics["method_performance"]["hybrid"]["count"] == 1


def test_feedback_for_unknown_query(client):
    response = client.post("/feedback", json={"query_id": "unknown", "rating": 3})
    assert response.status_code == 200
    assert response.json()["accepted"] is False


def test_feedback_validation(client):
    response = client.post("/feedback", json={"query_id": "q", "rating": 9})
    assert response.status_code == 422


def test_analytics_validation(client):
    assert client.get("/analytics?hours=0").status_code == 422

    data = client.get("/analytics?hours=48").json()
    assert data["time_range_hours"] == 48
    assert data["total_queries"] == 0


def test_recommendations(client):
    response = client.get("/analytics/recommendations")
    assert response.status_code == 200
    assert response.json() == {"recommendations": []}


@pytest.mark.parametrize(
    "score, label",
    [(0.95, "Excellent"), (0.7, "Good"), (0.5, "Fair"), (0.4, "Poor"), (0.0, "Poor")],
)
def test_match_quality(score, label):
    assert match_quality(score) == label


if __name__ == "__main__":
    pytest.main([__file__])
