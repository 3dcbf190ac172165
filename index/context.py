"""
Context chunk assembly for reranking and explanation.

Chunks are built per request from the candidate's own fields and are never
persisted.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import ChunkMetadata, ContextChunk, ScoredCandidate
from .providers import EmbeddingProvider
from .vectors import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_RELEVANCE = 0.5


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    return math.ceil(len(text) / 4)


class ContextBuilder:
    """Builds typed evidence chunks for scored candidates."""

    def build(
        self, scored: ScoredCandidate, chunked_at: Optional[datetime] = None
    ) -> List[ContextChunk]:
        """
        Build the profile, skills, experience and resume chunks of a candidate.

        The skills chunk is left out when the candidate has no skills and the
        resume chunk when there is neither summary nor resume text.
        """
        candidate = scored.candidate
        scores = scored.scores
        chunked_at = chunked_at or datetime.now(timezone.utc)
        title = candidate.title or "Not specified"
        company = candidate.company or "Not specified"

        chunks = []

        def add(chunk_type: str, content: str, relevance: float, source: str):
            chunks.append(
                ContextChunk(
                    id=f"{candidate.id}-{chunk_type}",
                    candidate_id=candidate.id,
                    type=chunk_type,
                    content=content,
                    relevance_score=relevance,
                    metadata=ChunkMetadata(
                        source=source, chunk_size=len(content), chunked_at=chunked_at
                    ),
                )
            )

        add(
            "profile",
            "\n".join(
                [
                    f"Name: {candidate.name}",
                    f"Current Position: {title} at {company}",
                    f"Experience: {candidate.years_experience:g} years",
                    f"Location: {candidate.location or 'Not specified'}",
                ]
            ),
            scores.profile,
            "candidate_profile",
        )

        if candidate.skills:
            add(
                "skills",
                f"Technical Skills: {', '.join(candidate.skills)}",
                scores.skills,
                "candidate_skills",
            )

        salary = (
            f"${candidate.salary_expectation:,}"
            if candidate.salary_expectation
            else "Not specified"
        )
        add(
            "experience",
            "\n".join(
                [
                    f"Professional Experience: {candidate.years_experience:g} years "
                    f"in the field",
                    f"Current Role: {title} at {company}",
                    f"Salary Expectation: {salary}",
                ]
            ),
            scores.experience,
            "candidate_experience",
        )

        resume = candidate.summary or candidate.resume_text
        if resume:
            add(
                "resume",
                resume,
                scores.resume,
                "candidate_summary" if candidate.summary else "candidate_resume",
            )

        return chunks

    def build_all(
        self, candidates: List[ScoredCandidate]
    ) -> Dict[str, List[ContextChunk]]:
        """Chunks for every candidate, keyed by candidate id."""
        chunked_at = datetime.now(timezone.utc)
        return {c.candidate.id: self.build(c, chunked_at) for c in candidates}

    async def optimize_context(
        self,
        chunks: List[ContextChunk],
        query: str,
        embedder: EmbeddingProvider,
        max_tokens: int = 2000,
    ) -> List[ContextChunk]:
        """
        Re-score chunks against the query and keep the most relevant ones
        that fit in the token budget.

        Chunks whose embedding fails keep a neutral relevance of 0.5.
        """
        if not chunks:
            return []

        try:
            query_vector = await embedder.embed(query)
        except Exception as e:
            logger.warning(f"Context optimization skipped, query embedding failed: {e}")
            return chunks[:5]

        async def _relevance(chunk: ContextChunk) -> float:
            try:
                vector = await embedder.embed(chunk.content)
                return cosine_similarity(vector, query_vector)
            except Exception as e:
                logger.warning(f"Error scoring chunk {chunk.id}: {e}")
                return DEFAULT_CHUNK_RELEVANCE

        relevances = await asyncio.gather(*(_relevance(c) for c in chunks))
        rescored = [
            chunk.model_copy(update={"relevance_score": relevance})
            for chunk, relevance in zip(chunks, relevances)
        ]
        rescored.sort(key=lambda c: (-c.relevance_score, c.id))

        selected = []
        total_tokens = 0
        for chunk in rescored:
            chunk_tokens = estimate_tokens(chunk.content)
            if total_tokens + chunk_tokens > max_tokens:
                break
            selected.append(chunk)
            total_tokens += chunk_tokens

        logger.info(f"Optimized context: {len(selected)} chunks, ~{total_tokens} tokens")
        return selected

    def assess_context_quality(self, chunks: List[ContextChunk]) -> Dict[str, object]:
        """
        Rate chunk coverage and quality as high, medium or low.

        Returns:
            Dictionary with quality, issues and recommendations
        """
        issues = []
        recommendations = []
        present = {chunk.type for chunk in chunks}

        for chunk_type in ("profile", "skills", "experience"):
            if chunk_type not in present:
                issues.append(f"Missing {chunk_type} information")
                recommendations.append(f"Add candidate {chunk_type} data")

        if chunks:
            avg_size = sum(len(c.content) for c in chunks) / len(chunks)
            if avg_size < 50:
                issues.append("Context chunks are too small")
                recommendations.append("Increase context chunk size for better quality")

            avg_relevance = sum(c.relevance_score for c in chunks) / len(chunks)
            if avg_relevance < 0.3:
                issues.append("Low average relevance scores")
                recommendations.append("Improve embedding quality or candidate data")

        if not issues:
            quality = "high"
        elif len(issues) <= 2:
            quality = "medium"
        else:
            quality = "low"

        return {"quality": quality, "issues": issues, "recommendations": recommendations}
