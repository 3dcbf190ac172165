"""
Shared fixtures and in-process doubles for the test suite.

The doubles replace the external collaborators (embedding model, LLM,
Weaviate) so that the pipeline can be exercised end to end without
network access or model downloads.
"""

import asyncio
import re
from typing import Dict, List, Optional, Union

import numpy as np
import pytest

from api.services.embedding import embed_candidates
from api.services.evaluation import EvaluationService
from api.services.telemetry import InMemoryTelemetryStore
from index.errors import EmbeddingUnavailable
from index.fusion import FusionEngine
from index.hybrid_search import HybridSearchPipeline
from index.keyword_search import KeywordSearchEngine
from index.models import CandidateRecord, FieldScores, ScoredCandidate
from index.providers import EmbeddingProvider, RerankerModel
from index.reranker import Reranker
from index.store import InMemoryCandidateStore
from index.vector_search import VectorSearchEngine

VOCABULARY = (
    "react", "aws", "typescript", "python", "django", "senior", "junior",
    "developer", "engineer", "frontend", "backend", "experience", "years",
    "cloud", "data", "ui", "ux", "machine", "learning",
)


class BagOfWordsEmbedder(EmbeddingProvider):
    """Deterministic embedder counting vocabulary words."""

    def __init__(self, vocabulary=VOCABULARY):
        self.vocabulary = vocabulary
        self.batch_sizes: List[int] = []

    async def embed(self, text: str) -> np.ndarray:
        tokens = re.findall(r"[a-z0-9]+", text.lower())
        return np.array([tokens.count(w) for w in self.vocabulary], dtype=np.float32)

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        self.batch_sizes.append(len(texts))
        return await super().embed_batch(texts)


class FailingEmbedder(EmbeddingProvider):
    async def embed(self, text: str) -> np.ndarray:
        raise EmbeddingUnavailable("embedding service down")


class ScriptedRerankerModel(RerankerModel):
    """
    Reranker model replying from a script.

    ``replies`` maps a marker (usually a candidate name) to a reply string or
    an exception to raise when the marker appears in the prompt.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Union[str, Exception]]] = None,
        default: str = "Score: 0.5\nExplanation: Adequate match",
        delay: float = 0.0,
    ):
        self.replies = replies or {}
        self.default = default
        self.delay = delay
        self.prompts: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def score(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            for marker, reply in self.replies.items():
                if marker in prompt:
                    if isinstance(reply, Exception):
                        raise reply
                    return reply
            return self.default
        finally:
            self.in_flight -= 1


def make_candidate(
    candidate_id: str, name: str, skills: List[str], years: float, **fields
) -> CandidateRecord:
    defaults = {
        "email": f"{candidate_id}@example.com",
        "title": "Frontend Developer",
        "company": "Acme",
        "location": "Berlin",
        "summary": "Builds web applications",
    }
    defaults.update(fields)
    return CandidateRecord(
        id=candidate_id, name=name, skills=skills, years_experience=years, **defaults
    )


def make_scored(
    candidate_id: str,
    match_score: float,
    method: str = "vector",
    **scores,
) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=make_candidate(candidate_id, f"Candidate {candidate_id}", ["React"], 3),
        scores=FieldScores(**scores),
        match_score=match_score,
        retrieval_method=method,
    )


def build_store(
    embedder: EmbeddingProvider, candidates: List[CandidateRecord]
) -> InMemoryCandidateStore:
    return InMemoryCandidateStore(asyncio.run(embed_candidates(embedder, candidates)))


def build_pipeline(
    store,
    embedder: EmbeddingProvider,
    reranker: Optional[Reranker] = None,
    evaluation: Optional[EvaluationService] = None,
    **kwargs,
) -> HybridSearchPipeline:
    return HybridSearchPipeline(
        vector_engine=VectorSearchEngine(store, embedder),
        keyword_engine=KeywordSearchEngine(store),
        fusion=FusionEngine(k=60),
        reranker=reranker,
        evaluation=evaluation,
        **kwargs,
    )


@pytest.fixture
def embedder():
    return BagOfWordsEmbedder()


@pytest.fixture
def react_candidates():
    return [
        make_candidate("c1", "Alice Example", ["React", "AWS", "TypeScript"], 6),
        make_candidate("c2", "Bob Example", ["React"], 1, company="Globex"),
    ]


@pytest.fixture
def react_store(embedder, react_candidates):
    return build_store(embedder, react_candidates)


@pytest.fixture
def evaluation():
    return EvaluationService(InMemoryTelemetryStore())
