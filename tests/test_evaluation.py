"""Tests for retrieval metrics, telemetry persistence and analytics."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from api.services.evaluation import (
    EvaluationService,
    classify_query,
    diversity_score,
    f1_score,
    precision,
    recall,
)
from api.services.telemetry import (
    InMemoryTelemetryStore,
    JsonlTelemetryStore,
    TelemetryStore,
)
from index.errors import TelemetryWriteError
from index.models import RankedResult, SearchMetrics, UserFeedback

from conftest import BagOfWordsEmbedder, FailingEmbedder, make_candidate, make_scored


def ranked(candidate_id, match_score):
    return RankedResult(
        candidate=make_scored(candidate_id, match_score),
        rerank_score=match_score,
        explanation="test",
        reranked=False,
    )


def metrics(query_id, **fields):
    values = {
        "query": "React developer",
        "query_type": "technical",
        "retrieval_method": "hybrid",
        "results_count": 2,
        "avg_match_score": 0.8,
        "top_result_score": 0.9,
        "execution_time_ms": 120.0,
    }
    values.update(fields)
    return SearchMetrics(query_id=query_id, **values)


class BrokenTelemetryStore(TelemetryStore):
    async def append(self, metrics):
        raise TelemetryWriteError("disk full")

    async def attach_feedback(self, query_id, feedback, evaluation=None):
        raise TelemetryWriteError("disk full")

    async def get(self, query_id):
        raise TelemetryWriteError("disk full")

    async def records(self, since=None):
        raise TelemetryWriteError("disk full")


def test_precision_and_recall():
    assert precision(["a", "b", "c", "d"], {"a", "c", "x"}) == pytest.approx(0.5)
    assert recall(["a", "b", "c", "d"], {"a", "c", "x"}) == pytest.approx(2 / 3)
    assert precision([], {"a"}) == 0.0
    assert recall(["a"], set()) == 1.0
    assert precision(["a"], set()) == 0.0


def test_f1_score():
    assert f1_score(0.5, 0.5) == pytest.approx(0.5)
    assert f1_score(0.0, 0.0) == 0.0


def test_diversity_score():
    same = [make_candidate(f"c{i}", "A", [], 3) for i in range(2)]
    varied = [
        make_candidate("c1", "A", [], 3, company="Acme", title="Dev", location="Berlin"),
        make_candidate("c2", "B", [], 3, company="Globex", title="Lead", location="Paris"),
    ]

    assert diversity_score([]) == 1.0
    assert diversity_score(same[:1]) == 1.0
    assert diversity_score(same) == pytest.approx(0.5)
    assert diversity_score(varied) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "query, expected",
    [
        ("Senior Python engineer", "technical"),
        ("Lead with 10 years of experience", "experience"),
        ("Someone based in London", "location"),
        ("Friendly office manager", "general"),
    ],
)
def test_classify_query(query, expected):
    assert classify_query(query) == expected


def test_evaluate_retrieval_quality():
    service = EvaluationService(InMemoryTelemetryStore(), BagOfWordsEmbedder())
    results = [ranked("a", 0.9), ranked("b", 0.5)]

    evaluation = asyncio.run(
        service.evaluate_retrieval_quality("React developer", results, relevant_ids=["a"])
    )

    assert evaluation.precision == pytest.approx(0.5)
    assert evaluation.recall == pytest.approx(1.0)
    assert evaluation.average_match_score == pytest.approx(0.7)
    assert evaluation.top_result_score == pytest.approx(0.9)
    assert 0.0 < evaluation.context_relevancy <= 1.0


def test_evaluate_without_ground_truth_or_embedder():
    service = EvaluationService(InMemoryTelemetryStore())

    evaluation = asyncio.run(service.evaluate_retrieval_quality("React", [ranked("a", 0.4)]))

    assert evaluation.precision == 0.0
    assert evaluation.recall == 1.0
    assert evaluation.context_relevancy == 0.0


def test_context_relevancy_survives_embedding_failure():
    service = EvaluationService(InMemoryTelemetryStore(), FailingEmbedder())
    records = [make_candidate("a", "A", ["React"], 3)]
    assert asyncio.run(service.context_relevancy("React", records)) == 0.0


def test_record_search_and_analytics():
    service = EvaluationService(InMemoryTelemetryStore())

    async def scenario():
        service.record_search("q1", "Senior React developer", [ranked("a", 0.9)], "hybrid", 100.0)
        service.record_search("q2", "Office manager in London", [], "keyword", 300.0)
        await service.drain()
        return await service.get_performance_analytics(24)

    analytics = asyncio.run(scenario())

    assert analytics["total_queries"] == 2
    assert analytics["average_response_time"] == pytest.approx(200.0)
    assert analytics["average_relevance_score"] == pytest.approx(0.45)
    assert analytics["average_rating"] is None
    assert analytics["query_type_distribution"] == {"technical": 1, "location": 1}
    assert analytics["method_performance"]["hybrid"]["count"] == 1
    assert analytics["method_performance"]["keyword"]["avg_score"] == 0.0


def test_feedback_for_unknown_query_is_ignored():
    service = EvaluationService(InMemoryTelemetryStore())
    feedback = UserFeedback(query_id="missing", rating=4)

    assert asyncio.run(service.process_feedback(feedback)) is False


def test_feedback_is_attached_to_recorded_query():
    service = EvaluationService(InMemoryTelemetryStore())

    async def scenario():
        service.record_search("q1", "React developer", [ranked("a", 0.9)], "vector", 50.0)
        await service.drain()
        attached = await service.process_feedback(
            UserFeedback(query_id="q1", rating=2, irrelevant_candidates=["a"])
        )
        return attached, await service.get_performance_analytics()

    attached, analytics = asyncio.run(scenario())

    assert attached is True
    assert analytics["average_rating"] == pytest.approx(2.0)


def test_feedback_sent_before_the_write_lands_is_kept():
    service = EvaluationService(InMemoryTelemetryStore())

    async def scenario():
        service.record_search("q1", "React developer", [ranked("a", 0.9)], "vector", 50.0)
        attached = await service.process_feedback(UserFeedback(query_id="q1", rating=4))
        return attached, await service.store.get("q1")

    attached, record = asyncio.run(scenario())

    assert attached is True
    assert record.user_feedback.rating == 4


def test_recorded_search_carries_result_ids_and_evaluation():
    service = EvaluationService(InMemoryTelemetryStore(), BagOfWordsEmbedder())
    results = [ranked("a", 0.9), ranked("b", 0.5)]

    async def scenario():
        service.record_search("q1", "React developer", results, "hybrid", 50.0)
        await service.drain()
        return await service.store.get("q1")

    record = asyncio.run(scenario())

    assert record.result_ids == ["a", "b"]
    assert record.evaluation_metrics.average_match_score == pytest.approx(0.7)
    assert record.evaluation_metrics.top_result_score == pytest.approx(0.9)
    assert 0.0 < record.evaluation_metrics.context_relevancy <= 1.0


def test_feedback_relevant_candidates_set_precision_and_recall():
    service = EvaluationService(InMemoryTelemetryStore())
    results = [ranked("a", 0.9), ranked("b", 0.5)]

    async def scenario():
        service.record_search("q1", "React developer", results, "hybrid", 50.0)
        await service.process_feedback(
            UserFeedback(query_id="q1", rating=3, relevant_candidates=["a", "x"])
        )
        return await service.store.get("q1")

    evaluation = asyncio.run(scenario()).evaluation_metrics

    assert evaluation.precision == pytest.approx(0.5)
    assert evaluation.recall == pytest.approx(0.5)
    assert evaluation.f1_score == pytest.approx(0.5)
    assert evaluation.average_match_score == pytest.approx(0.7)


def test_feedback_without_relevant_candidates_keeps_stored_evaluation():
    service = EvaluationService(InMemoryTelemetryStore())
    record = metrics("q1", result_ids=["a"])

    assert service.feedback_evaluation(record, UserFeedback(query_id="q1", rating=5)) is None

    evaluation = service.feedback_evaluation(
        record, UserFeedback(query_id="q1", rating=5, relevant_candidates=["a"])
    )
    assert evaluation.precision == 1.0
    assert evaluation.recall == 1.0
    assert evaluation.top_result_score == pytest.approx(0.9)


def test_telemetry_failures_never_propagate():
    service = EvaluationService(BrokenTelemetryStore())

    async def scenario():
        task = service.record_search("q1", "React", [ranked("a", 0.9)], "vector", 10.0)
        await service.drain()
        feedback = await service.process_feedback(UserFeedback(query_id="q1", rating=5))
        analytics = await service.get_performance_analytics()
        return task, feedback, analytics

    task, feedback, analytics = asyncio.run(scenario())

    assert task.done() and task.exception() is None
    assert feedback is False
    assert analytics["total_queries"] == 0


def test_recommendations():
    store = InMemoryTelemetryStore()
    service = EvaluationService(store)

    async def scenario():
        await store.append(metrics("q1", avg_match_score=0.4, execution_time_ms=4000.0))
        await store.attach_feedback("q1", UserFeedback(query_id="q1", rating=1))
        return await service.generate_recommendations()

    recommendations = asyncio.run(scenario())

    assert any("response time is high" in r for r in recommendations)
    assert any("Relevance scores are low" in r for r in recommendations)
    assert any("rate results poorly" in r for r in recommendations)
    assert any(r.startswith("hybrid search method is slow") for r in recommendations)


def test_no_recommendations_without_telemetry():
    service = EvaluationService(InMemoryTelemetryStore())
    assert asyncio.run(service.generate_recommendations()) == []


def test_jsonl_store_round_trip(tmp_path):
    path = tmp_path / "telemetry" / "metrics.jsonl"
    store = JsonlTelemetryStore(str(path))

    async def write():
        await store.append(metrics("q1"))
        await store.append(metrics("q2", retrieval_method="vector"))
        return await store.attach_feedback("q1", UserFeedback(query_id="q1", rating=5))

    assert asyncio.run(write()) is True

    reopened = JsonlTelemetryStore(str(path))
    records = {r.query_id: r for r in asyncio.run(reopened.records())}

    assert set(records) == {"q1", "q2"}
    assert records["q1"].user_feedback.rating == 5
    assert records["q2"].user_feedback is None
    assert len(path.read_text().splitlines()) == 3


def test_jsonl_store_persists_feedback_evaluation(tmp_path):
    path = tmp_path / "metrics.jsonl"
    service = EvaluationService(JsonlTelemetryStore(str(path)))

    async def scenario():
        service.record_search(
            "q1", "React developer", [ranked("a", 0.9), ranked("b", 0.5)], "hybrid", 50.0
        )
        return await service.process_feedback(
            UserFeedback(query_id="q1", rating=4, relevant_candidates=["b"])
        )

    assert asyncio.run(scenario()) is True

    record = asyncio.run(JsonlTelemetryStore(str(path)).get("q1"))

    assert record.result_ids == ["a", "b"]
    assert record.user_feedback.rating == 4
    assert record.evaluation_metrics.precision == pytest.approx(0.5)
    assert record.evaluation_metrics.recall == pytest.approx(1.0)


def test_jsonl_store_ignores_feedback_for_unknown_query(tmp_path):
    path = tmp_path / "metrics.jsonl"
    store = JsonlTelemetryStore(str(path))

    attached = asyncio.run(store.attach_feedback("nope", UserFeedback(query_id="nope", rating=3)))

    assert attached is False
    assert not path.exists()


def test_jsonl_store_skips_malformed_lines(tmp_path):
    path = tmp_path / "metrics.jsonl"
    good = {"kind": "metrics", "record": metrics("q1").model_dump(mode="json")}
    path.write_text("not json\n" + json.dumps(good) + "\n" + '{"kind": "metrics"}\n')

    records = asyncio.run(JsonlTelemetryStore(str(path)).records())

    assert [r.query_id for r in records] == ["q1"]


def test_records_since_filters_old_entries():
    store = InMemoryTelemetryStore()
    old = metrics("old", timestamp=datetime.now(timezone.utc) - timedelta(days=3))

    async def scenario():
        await store.append(old)
        await store.append(metrics("new"))
        return await store.records(since=datetime.now(timezone.utc) - timedelta(hours=24))

    assert [r.query_id for r in asyncio.run(scenario())] == ["new"]
