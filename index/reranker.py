"""
LLM-based reranking of fused candidates.

Each candidate's context chunks are sent with the job description to a
completion model that replies with a score and an explanation. Any failure
for a candidate falls back to its match score, so reranking always returns a
complete ranking.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import RerankError, RerankParseError, RerankProviderError
from .models import ContextChunk, RankedResult, ScoredCandidate
from .providers import RerankerModel

logger = logging.getLogger(__name__)

FALLBACK_EXPLANATION = "Fallback to original match score due to reranking error"
DISABLED_EXPLANATION = "Reranking disabled; ranked by fused retrieval score"

PROMPT_TEMPLATE = """As a recruitment expert, evaluate how well this candidate matches the job requirements.

JOB REQUIREMENTS:
{query}

CANDIDATE PROFILE:
{context}

Provide a relevance score from 0.0 to 1.0 and a brief explanation.
Consider:
1. Technical skill alignment
2. Experience level match
3. Role suitability
4. Overall fit

Response format:
Score: [0.0-1.0]
Explanation: [Brief explanation of the match quality]"""

_SCORE_PATTERN = re.compile(r"Score:\s*\**\s*(-?\d*\.?\d+)", re.IGNORECASE)
_EXPLANATION_PATTERN = re.compile(r"Explanation:\s*\**\s*(.+)", re.IGNORECASE)


@dataclass(frozen=True)
class RerankJudgement:
    score: float
    explanation: str


def build_prompt(query: str, chunks: List[ContextChunk]) -> str:
    context = "\n\n".join(f"[{chunk.type.upper()}] {chunk.content}" for chunk in chunks)
    return PROMPT_TEMPLATE.format(query=query.strip(), context=context)


def parse_reply(reply: str) -> RerankJudgement:
    """
    Parse a ``Score:`` / ``Explanation:`` reply, clamping the score to [0, 1].

    Raises:
        RerankParseError: If either field is missing
    """
    score_match = _SCORE_PATTERN.search(reply or "")
    explanation_match = _EXPLANATION_PATTERN.search(reply or "")

    if not score_match or not explanation_match:
        raise RerankParseError(f"Unparseable reranker reply: {(reply or '')[:100]!r}")

    explanation = explanation_match.group(1).strip()
    if not explanation:
        raise RerankParseError("Empty explanation in reranker reply")

    score = float(score_match.group(1))
    return RerankJudgement(score=min(1.0, max(0.0, score)), explanation=explanation)


class Reranker:
    """Scores candidates with a completion model under bounded concurrency."""

    def __init__(
        self,
        model: RerankerModel,
        max_concurrency: int = 5,
        timeout: Optional[float] = 30.0,
    ):
        self.model = model
        self.max_concurrency = max(1, max_concurrency)
        self.timeout = timeout

    async def score_candidate(
        self, query: str, chunks: List[ContextChunk]
    ) -> RerankJudgement:
        """
        Score one candidate.

        Raises:
            RerankParseError: If the reply cannot be parsed
            RerankProviderError: If the model call fails or times out
        """
        prompt = build_prompt(query, chunks)
        try:
            if self.timeout:
                reply = await asyncio.wait_for(self.model.score(prompt), self.timeout)
            else:
                reply = await self.model.score(prompt)
        except RerankError:
            raise
        except asyncio.TimeoutError as e:
            raise RerankProviderError(
                f"Reranker timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise RerankProviderError(f"Reranker call failed: {e}") from e

        return parse_reply(reply)

    async def rerank(
        self,
        query: str,
        candidates: List[ScoredCandidate],
        chunks: Dict[str, List[ContextChunk]],
        top_k: int = 10,
    ) -> List[RankedResult]:
        """
        Rerank candidates and keep the best ``top_k``.

        Args:
            query: Job description
            candidates: Fused candidates in retrieval order
            chunks: Context chunks keyed by candidate id
            top_k: Number of results to keep

        Returns:
            Results ordered by rerank score descending, ties keeping the
            retrieval order
        """
        logger.info(f"Reranking {len(candidates)} candidates for query...")
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _rank(scored: ScoredCandidate) -> RankedResult:
            candidate_chunks = chunks.get(scored.candidate.id, [])
            async with semaphore:
                try:
                    judgement = await self.score_candidate(query, candidate_chunks)
                except RerankError as e:
                    logger.warning(
                        f"Reranking failed for candidate {scored.candidate.id}, "
                        f"using match score: {e}"
                    )
                    return fallback_result(scored, candidate_chunks)

            return RankedResult(
                candidate=scored,
                context_chunks=candidate_chunks,
                rerank_score=judgement.score,
                explanation=judgement.explanation,
                reranked=True,
            )

        ranked = await asyncio.gather(*(_rank(c) for c in candidates))

        order = {c.candidate.id: i for i, c in enumerate(candidates)}
        ranked.sort(key=lambda r: (-r.rerank_score, order[r.candidate.candidate.id]))

        fallbacks = sum(1 for r in ranked if not r.reranked)
        if fallbacks:
            logger.warning(f"{fallbacks}/{len(ranked)} candidates used fallback scores")

        return ranked[:top_k]


def fallback_result(
    scored: ScoredCandidate,
    chunks: List[ContextChunk],
    explanation: str = FALLBACK_EXPLANATION,
) -> RankedResult:
    """Result carrying the candidate's match score in place of a rerank score."""
    return RankedResult(
        candidate=scored,
        context_chunks=chunks,
        rerank_score=scored.match_score,
        explanation=explanation,
        reranked=False,
    )
