"""
Candidate store interface and an in-process implementation.

The pipeline only reads from the store. The in-memory store backs tests and
small deployments (``CANDIDATE_STORE=memory``); the Weaviate store in
``index.search_engine`` is the production backend.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .filters import Predicate, build_keyword_filter, combine_all
from .models import EMBEDDING_FIELDS, CandidateRecord
from .vectors import cosine_similarity

logger = logging.getLogger(__name__)


class CandidateStore(ABC):
    """Read interface used by the search engines, plus indexing for ingest."""

    @abstractmethod
    async def query_by_vector_similarity(
        self,
        field: str,
        query_vector: np.ndarray,
        filters: Optional[Predicate],
        limit: int,
    ) -> List[Tuple[CandidateRecord, float]]:
        """
        Nearest neighbours on one embedding field by cosine similarity.

        Returns:
            (record, similarity) pairs, most similar first
        """

    @abstractmethod
    async def query_by_keyword(
        self,
        tokens: Sequence[str],
        skill_tokens: Sequence[str],
        filters: Optional[Predicate],
        limit: int,
    ) -> List[CandidateRecord]:
        """Candidates matching any token or skill token, under the filters."""

    @abstractmethod
    async def index_candidates(self, records: List[CandidateRecord]) -> int:
        """Add or replace candidates; returns the number indexed."""

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        """Total candidates and candidates with the required embeddings."""

    def close(self) -> None:
        """Release backend resources."""


def has_required_embeddings(record: CandidateRecord) -> bool:
    return all(record.has_embedding(field) for field in EMBEDDING_FIELDS[:3])


class InMemoryCandidateStore(CandidateStore):
    """Candidate store holding records in a dict keyed by candidate id."""

    def __init__(self, records: Optional[List[CandidateRecord]] = None):
        self._records: Dict[str, CandidateRecord] = {}
        for record in records or []:
            self._records[record.id] = record

    async def query_by_vector_similarity(
        self,
        field: str,
        query_vector: np.ndarray,
        filters: Optional[Predicate],
        limit: int,
    ) -> List[Tuple[CandidateRecord, float]]:
        if field not in EMBEDDING_FIELDS:
            raise ValueError(f"Unknown embedding field: {field}")

        scored = []
        for record in self._records.values():
            if not record.has_embedding(field):
                continue
            if filters is not None and not filters.matches(record):
                continue
            similarity = cosine_similarity(record.embeddings[field], query_vector)
            scored.append((record, similarity))

        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        return scored[:limit]

    async def query_by_keyword(
        self,
        tokens: Sequence[str],
        skill_tokens: Sequence[str],
        filters: Optional[Predicate],
        limit: int,
    ) -> List[CandidateRecord]:
        keyword_filter = build_keyword_filter(tokens, skill_tokens)
        if keyword_filter is None:
            return []

        predicate = combine_all([keyword_filter, filters])
        matches = [r for r in self._records.values() if predicate.matches(r)]
        matches.sort(key=lambda r: r.id)
        return matches[:limit]

    async def index_candidates(self, records: List[CandidateRecord]) -> int:
        for record in records:
            self._records[record.id] = record
        logger.info(f"Indexed {len(records)} candidates in memory")
        return len(records)

    async def stats(self) -> Dict[str, int]:
        records = list(self._records.values())
        return {
            "total_candidates": len(records),
            "candidates_with_embeddings": sum(
                1 for r in records if has_required_embeddings(r)
            ),
        }
