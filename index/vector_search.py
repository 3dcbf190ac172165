"""
Multi-field vector similarity search.

The query is embedded twice (full description and its skills-focused lines)
and matched against the candidates' profile, skills, experience and resume
embeddings. The composite match score is a convex combination of the
per-field cosine similarities.
"""

import asyncio
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import EmbeddingUnavailable
from .filters import build_candidate_filter
from .models import (
    EMBEDDING_FIELDS,
    CandidateRecord,
    FieldScores,
    ScoredCandidate,
    SearchQuery,
)
from .providers import EmbeddingProvider
from .store import CandidateStore, has_required_embeddings
from .vectors import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: Dict[str, float] = {
    "profile": 0.3,
    "skills": 0.4,
    "experience": 0.2,
    "resume": 0.1,
}

SKILLS_SECTION_KEYWORDS = ("skills", "technologies", "requirements", "experience with")


def extract_section(job_description: str, keywords: Sequence[str]) -> str:
    """Lines of the description mentioning any keyword, else the whole text."""
    lines = [
        line
        for line in job_description.split("\n")
        if any(keyword in line.lower() for keyword in keywords)
    ]
    return "\n".join(lines) or job_description


def validate_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """
    Check that field weights cover known fields, are non-negative and sum to 1.

    Raises:
        ValueError: If the weights do not form a convex combination
    """
    unknown = set(weights) - set(EMBEDDING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown embedding fields in weights: {sorted(unknown)}")
    if any(w < 0 for w in weights.values()):
        raise ValueError("Field weights must be non-negative")
    if not math.isclose(sum(weights.values()), 1.0, abs_tol=1e-9):
        raise ValueError(f"Field weights must sum to 1.0, got {sum(weights.values())}")
    return {field: weights.get(field, 0.0) for field in EMBEDDING_FIELDS}


class VectorSearchEngine:
    """Nearest-neighbour candidate search over several embedding fields."""

    method = "vector"

    def __init__(
        self,
        store: CandidateStore,
        embedder: EmbeddingProvider,
        weights: Optional[Dict[str, float]] = None,
        fields: Sequence[str] = EMBEDDING_FIELDS,
    ):
        self.store = store
        self.embedder = embedder
        self.weights = validate_weights(weights or DEFAULT_FIELD_WEIGHTS)
        self.fields = tuple(f for f in fields if self.weights.get(f, 0.0) > 0)

    async def embed_query(self, job_description: str) -> Dict[str, np.ndarray]:
        """
        Embed the query for every field.

        Returns:
            Mapping of embedding field to the query vector compared against it

        Raises:
            EmbeddingUnavailable: If the provider fails
        """
        skills_text = extract_section(job_description, SKILLS_SECTION_KEYWORDS)
        try:
            full, skills = await asyncio.gather(
                self.embedder.embed(job_description),
                self.embedder.embed(skills_text),
            )
        except EmbeddingUnavailable:
            raise
        except Exception as e:
            raise EmbeddingUnavailable(f"Query embedding failed: {e}") from e

        return {
            "profile": full,
            "skills": skills,
            "experience": full,
            "resume": full,
        }

    async def search(
        self, query: SearchQuery, limit: Optional[int] = None
    ) -> List[ScoredCandidate]:
        """
        Search candidates by weighted multi-field cosine similarity.

        Args:
            query: Validated search query
            limit: Number of results to return (defaults to query.max_results)

        Returns:
            Candidates ordered by composite score, ties by id ascending

        Raises:
            EmbeddingUnavailable: If the query cannot be embedded
        """
        limit = limit or query.max_results
        query_vectors = await self.embed_query(query.job_description)
        filters = build_candidate_filter(query)

        per_field = await asyncio.gather(
            *(
                self.store.query_by_vector_similarity(
                    field, query_vectors[field], filters, limit
                )
                for field in self.fields
            )
        )

        candidates: Dict[str, CandidateRecord] = {}
        known: Dict[Tuple[str, str], float] = {}
        for field, hits in zip(self.fields, per_field):
            for record, similarity in hits:
                candidates.setdefault(record.id, record)
                known[(record.id, field)] = similarity

        results = []
        for record in candidates.values():
            if not has_required_embeddings(record):
                continue
            scores = self._field_scores(record, query_vectors, known)
            results.append(
                ScoredCandidate(
                    candidate=record,
                    scores=scores,
                    match_score=self.composite_score(scores),
                    retrieval_method="vector",
                )
            )

        results.sort(key=lambda c: (-c.match_score, c.candidate.id))
        logger.info(
            f"Vector search scored {len(results)} candidates across "
            f"{len(self.fields)} fields"
        )
        return results[:limit]

    def _field_scores(
        self,
        record: CandidateRecord,
        query_vectors: Dict[str, np.ndarray],
        known: Dict[Tuple[str, str], float],
    ) -> FieldScores:
        similarities = {}
        for field in EMBEDDING_FIELDS:
            if (record.id, field) in known:
                similarities[field] = known[(record.id, field)]
            elif record.has_embedding(field):
                similarities[field] = cosine_similarity(
                    record.embeddings[field], query_vectors[field]
                )
            else:
                similarities[field] = 0.0
        return FieldScores(**similarities)

    def composite_score(self, scores: FieldScores) -> float:
        """Weighted sum of field similarities, clamped to [0, 1]."""
        total = sum(
            getattr(scores, field) * weight for field, weight in self.weights.items()
        )
        return min(max(total, 0.0), 1.0)
