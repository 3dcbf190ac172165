"""
Reciprocal Rank Fusion of vector and keyword result lists.

Fusion is purely rank-based: raw vector similarities and keyword scores live
on different scales and are never added together.
"""

import logging
import os
from typing import Dict, List, Optional, Sequence

from .models import ScoredCandidate

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


def rrf_term(rank: int, k: int = DEFAULT_RRF_K) -> float:
    """Contribution of a 0-based rank to the fused score."""
    return 1.0 / (k + rank + 1)


class FusionEngine:
    """Merges ranked candidate lists with Reciprocal Rank Fusion."""

    def __init__(self, k: Optional[int] = None):
        self.k = k if k is not None else int(os.getenv("RRF_K", str(DEFAULT_RRF_K)))
        if self.k < 0:
            raise ValueError(f"RRF constant must be non-negative, got {self.k}")

    def fuse(self, *ranked_lists: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
        """
        Fuse ranked lists into one ranking.

        Args:
            ranked_lists: Lists ordered best first, e.g. (vector, keyword)

        Returns:
            Candidates ordered by fused score descending, ties by id
            ascending; sub-scores are the per-field maximum across lists
        """
        fused: Dict[str, ScoredCandidate] = {}
        methods: Dict[str, set] = {}

        for ranked in ranked_lists:
            seen = set()
            for rank, item in enumerate(ranked):
                candidate_id = item.candidate.id
                if candidate_id in seen:
                    continue
                seen.add(candidate_id)

                term = rrf_term(rank, self.k)
                current = fused.get(candidate_id)
                if current is None:
                    fused[candidate_id] = item.model_copy(
                        update={"fused_score": term}
                    )
                    methods[candidate_id] = {item.retrieval_method}
                else:
                    fused[candidate_id] = current.model_copy(
                        update={
                            "scores": current.scores.merge_max(item.scores),
                            "match_score": max(current.match_score, item.match_score),
                            "fused_score": current.fused_score + term,
                        }
                    )
                    methods[candidate_id].add(item.retrieval_method)

        results = []
        for candidate_id, item in fused.items():
            found_by = methods[candidate_id]
            method = "hybrid" if len(found_by) > 1 else next(iter(found_by))
            results.append(item.model_copy(update={"retrieval_method": method}))

        results.sort(key=lambda c: (-c.fused_score, c.candidate.id))
        logger.info(
            f"Fused {sum(len(r) for r in ranked_lists)} ranked entries into "
            f"{len(results)} candidates (k={self.k})"
        )
        return results
