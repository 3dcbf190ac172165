"""
Retrieval quality evaluation and search telemetry.

Evaluation is observational: metrics are persisted in background tasks and
every persistence failure is logged and dropped, never propagated to the
search path.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Dict, Iterable, List, Optional, Sequence, Set

from index.errors import TelemetryWriteError
from index.models import (
    CandidateRecord,
    EvaluationMetrics,
    RankedResult,
    SearchMetrics,
    UserFeedback,
)
from index.providers import EmbeddingProvider
from index.vectors import cosine_similarity

from .telemetry import TelemetryStore

logger = logging.getLogger(__name__)

TECHNICAL_KEYWORDS = (
    "javascript", "python", "react", "node", "sql", "aws", "docker",
    "kubernetes", "java", "typescript", "angular", "vue", "spring", "django",
    "mongodb",
)
EXPERIENCE_KEYWORDS = (
    "senior", "junior", "lead", "principal", "years", "experience", "expert",
)
LOCATION_KEYWORDS = (
    "remote", "new york", "san francisco", "london", "berlin", "toronto",
    "location",
)

DIVERSITY_WEIGHTS = {"company": 0.4, "title": 0.4, "location": 0.2}


def precision(retrieved_ids: Sequence[str], relevant_ids: Set[str]) -> float:
    """Relevant retrieved / retrieved; 0 when nothing was retrieved."""
    if not retrieved_ids:
        return 0.0
    hits = sum(1 for cid in retrieved_ids if cid in relevant_ids)
    return hits / len(retrieved_ids)


def recall(retrieved_ids: Sequence[str], relevant_ids: Set[str]) -> float:
    """Relevant retrieved / relevant; 1 when there is nothing relevant."""
    if not relevant_ids:
        return 1.0
    retrieved = set(retrieved_ids)
    hits = sum(1 for cid in relevant_ids if cid in retrieved)
    return hits / len(relevant_ids)


def f1_score(precision_value: float, recall_value: float) -> float:
    if precision_value + recall_value == 0:
        return 0.0
    return 2 * precision_value * recall_value / (precision_value + recall_value)


def diversity_score(candidates: Sequence[CandidateRecord]) -> float:
    """
    Weighted distinct-value ratio over company, title and location.

    A single candidate (or none) counts as fully diverse.
    """
    if len(candidates) <= 1:
        return 1.0

    total = len(candidates)
    return sum(
        weight * len({getattr(c, attribute) for c in candidates}) / total
        for attribute, weight in DIVERSITY_WEIGHTS.items()
    )


def classify_query(query: str) -> str:
    """Classify a query as technical, experience, location or general."""
    lowered = query.lower()
    if any(keyword in lowered for keyword in TECHNICAL_KEYWORDS):
        return "technical"
    if any(keyword in lowered for keyword in EXPERIENCE_KEYWORDS):
        return "experience"
    if any(keyword in lowered for keyword in LOCATION_KEYWORDS):
        return "location"
    return "general"


def candidate_context_text(candidate: CandidateRecord) -> str:
    return (
        f"{candidate.title or ''} at {candidate.company or ''}. "
        f"Skills: {', '.join(candidate.skills)}. "
        f"Experience: {candidate.years_experience:g} years. "
        f"{candidate.summary or ''}"
    ).strip()


class EvaluationService:
    """
    Computes retrieval metrics and records per-query telemetry.

    Telemetry writes run as background tasks keyed by query id; feedback for
    a query waits for its write, and ``drain`` waits for all of them (used on
    shutdown and in tests).
    """

    def __init__(self, store: TelemetryStore, embedder: Optional[EmbeddingProvider] = None):
        self.store = store
        self.embedder = embedder
        self._pending: Dict[str, asyncio.Task] = {}

    async def evaluate_retrieval_quality(
        self,
        query: str,
        results: Sequence[RankedResult],
        relevant_ids: Optional[Iterable[str]] = None,
    ) -> EvaluationMetrics:
        """
        Evaluate a result set against an optional ground-truth relevant set.

        Args:
            query: Job description that produced the results
            results: Ranked results in output order
            relevant_ids: Ids of candidates known to be relevant

        Returns:
            EvaluationMetrics for the result set
        """
        relevant = set(relevant_ids or [])
        retrieved_ids = [r.candidate.candidate.id for r in results]
        records = [r.candidate.candidate for r in results]

        precision_value = precision(retrieved_ids, relevant)
        recall_value = recall(retrieved_ids, relevant)
        match_scores = [r.candidate.match_score for r in results]

        return EvaluationMetrics(
            precision=precision_value,
            recall=recall_value,
            f1_score=f1_score(precision_value, recall_value),
            context_relevancy=await self.context_relevancy(query, records),
            diversity_score=diversity_score(records),
            average_match_score=(
                sum(match_scores) / len(match_scores) if match_scores else 0.0
            ),
            top_result_score=match_scores[0] if match_scores else 0.0,
        )

    async def context_relevancy(
        self, query: str, candidates: Sequence[CandidateRecord]
    ) -> float:
        """Mean cosine similarity of query and per-candidate context embeddings."""
        if not candidates or self.embedder is None:
            return 0.0

        try:
            query_vector = await self.embedder.embed(query)
            vectors = await asyncio.gather(
                *(self.embedder.embed(candidate_context_text(c)) for c in candidates)
            )
        except Exception as e:
            logger.warning(f"Error evaluating context relevancy: {e}")
            return 0.0

        similarities = [cosine_similarity(query_vector, v) for v in vectors]
        return sum(similarities) / len(similarities)

    def build_metrics(
        self,
        query_id: str,
        query: str,
        results: Sequence[RankedResult],
        retrieval_method: str,
        execution_time_ms: float,
    ) -> SearchMetrics:
        match_scores = [r.candidate.match_score for r in results]
        return SearchMetrics(
            query_id=query_id,
            query=query,
            query_type=classify_query(query),
            retrieval_method=retrieval_method,
            results_count=len(results),
            avg_match_score=sum(match_scores) / len(match_scores) if match_scores else 0.0,
            top_result_score=match_scores[0] if match_scores else 0.0,
            execution_time_ms=execution_time_ms,
            result_ids=[r.candidate.candidate.id for r in results],
        )

    def record_search(
        self,
        query_id: str,
        query: str,
        results: Sequence[RankedResult],
        retrieval_method: str,
        execution_time_ms: float,
    ) -> Optional[asyncio.Task]:
        """
        Schedule persistence of the search metrics and return immediately.

        Returns:
            The background task, or None when metrics could not be built
        """
        try:
            metrics = self.build_metrics(
                query_id, query, results, retrieval_method, execution_time_ms
            )
        except Exception as e:
            logger.warning(f"Could not build search metrics for {query_id}: {e}")
            return None

        logger.info(
            f"Search Metrics [{query_id}]: results={metrics.results_count}, "
            f"avg_match_score={metrics.avg_match_score:.3f}, "
            f"time={metrics.execution_time_ms:.0f}ms, "
            f"method={metrics.retrieval_method}"
        )

        task = asyncio.create_task(self._persist(metrics, query, list(results)))
        self._pending[query_id] = task
        task.add_done_callback(partial(self._forget, query_id))
        return task

    def _forget(self, query_id: str, task: asyncio.Task) -> None:
        if self._pending.get(query_id) is task:
            del self._pending[query_id]

    async def _persist(
        self, metrics: SearchMetrics, query: str, results: List[RankedResult]
    ) -> None:
        try:
            evaluation = await self.evaluate_retrieval_quality(query, results)
            metrics = metrics.model_copy(update={"evaluation_metrics": evaluation})
            await self.store.append(metrics)
        except TelemetryWriteError as e:
            logger.warning(f"Metrics store not available - continuing without logging: {e}")
        except Exception as e:
            logger.warning(f"Error storing search metrics: {e}")

    def feedback_evaluation(
        self, record: SearchMetrics, feedback: UserFeedback
    ) -> Optional[EvaluationMetrics]:
        """
        Recompute precision, recall and F1 of a recorded search from feedback.

        Candidates the user marked relevant are the ground truth. Without any
        the stored metrics are kept (None is returned).
        """
        if not feedback.relevant_candidates:
            return None

        relevant = set(feedback.relevant_candidates)
        precision_value = precision(record.result_ids, relevant)
        recall_value = recall(record.result_ids, relevant)
        scores = {
            "precision": precision_value,
            "recall": recall_value,
            "f1_score": f1_score(precision_value, recall_value),
        }

        if record.evaluation_metrics is not None:
            return record.evaluation_metrics.model_copy(update=scores)
        return EvaluationMetrics(
            context_relevancy=0.0,
            diversity_score=0.0,
            average_match_score=record.avg_match_score,
            top_result_score=record.top_result_score,
            **scores,
        )

    async def process_feedback(self, feedback: UserFeedback) -> bool:
        """
        Merge user feedback into the telemetry record of its query.

        Waits for a telemetry write of the same query that is still in
        flight, so feedback sent right after a search is not lost.

        Returns:
            True if the feedback was attached to a recorded query
        """
        pending = self._pending.get(feedback.query_id)
        if pending is not None:
            await asyncio.wait({pending})

        try:
            record = await self.store.get(feedback.query_id)
            attached = record is not None and await self.store.attach_feedback(
                feedback.query_id, feedback, self.feedback_evaluation(record, feedback)
            )
        except Exception as e:
            logger.warning(f"Error processing feedback for {feedback.query_id}: {e}")
            return False

        if attached:
            logger.info(
                f"Processed feedback for query {feedback.query_id}: "
                f"Rating {feedback.rating}/5"
            )
        else:
            logger.info(f"Ignoring feedback for unknown query {feedback.query_id}")
        return attached

    async def drain(self) -> None:
        """Wait for telemetry writes still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)

    async def get_performance_analytics(self, time_range_hours: int = 24) -> Dict:
        """
        Aggregate telemetry over the last ``time_range_hours`` hours.

        Returns:
            Totals, averages, query type distribution and per-method stats
        """
        empty = {
            "total_queries": 0,
            "average_response_time": 0.0,
            "average_relevance_score": 0.0,
            "average_rating": None,
            "query_type_distribution": {},
            "method_performance": {},
        }

        since = datetime.now(timezone.utc) - timedelta(hours=time_range_hours)
        try:
            records = await self.store.records(since=since)
        except Exception as e:
            logger.warning(f"Analytics not available - metrics store error: {e}")
            return empty

        if not records:
            return empty

        type_distribution: Dict[str, int] = defaultdict(int)
        by_method: Dict[str, List[SearchMetrics]] = defaultdict(list)
        for record in records:
            type_distribution[record.query_type] += 1
            by_method[record.retrieval_method].append(record)

        ratings = [r.user_feedback.rating for r in records if r.user_feedback]

        return {
            "total_queries": len(records),
            "average_response_time": _mean(r.execution_time_ms for r in records),
            "average_relevance_score": _mean(r.avg_match_score for r in records),
            "average_rating": _mean(ratings) if ratings else None,
            "query_type_distribution": dict(type_distribution),
            "method_performance": {
                method: {
                    "count": len(items),
                    "avg_score": _mean(r.avg_match_score for r in items),
                    "avg_time": _mean(r.execution_time_ms for r in items),
                }
                for method, items in by_method.items()
            },
        }

    async def generate_recommendations(self) -> List[str]:
        """Tuning suggestions from the last week of telemetry."""
        analytics = await self.get_performance_analytics(168)
        recommendations = []

        if analytics["total_queries"] == 0:
            return recommendations

        if analytics["average_response_time"] > 2000:
            recommendations.append(
                "Consider optimizing query execution - average response time is high"
            )

        if analytics["average_relevance_score"] < 0.7:
            recommendations.append(
                "Relevance scores are low - consider improving embedding quality "
                "or search parameters"
            )

        if analytics["average_rating"] is not None and analytics["average_rating"] < 3:
            recommendations.append(
                "Users rate results poorly - review candidates marked irrelevant "
                "in feedback to adjust field weights"
            )

        for method, performance in analytics["method_performance"].items():
            if performance["avg_score"] < 0.6:
                recommendations.append(
                    f"{method} search method showing low relevance scores - "
                    f"needs optimization"
                )
            if performance["avg_time"] > 3000:
                recommendations.append(
                    f"{method} search method is slow - consider performance improvements"
                )

        return recommendations


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0
