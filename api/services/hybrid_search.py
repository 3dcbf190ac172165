"""
Candidate search service wrapper.

This module wires the retrieval pipeline to its collaborators (embedding
model, candidate store, reranker model, telemetry) for use in the API layer.
"""

import logging
import os
import time
from typing import Dict, List, Optional

from index.context import ContextBuilder
from index.fusion import FusionEngine
from index.hybrid_search import HybridSearchPipeline
from index.keyword_search import KeywordSearchEngine
from index.models import CandidateRecord, SearchOutcome, UserFeedback
from index.providers import EmbeddingProvider
from index.reranker import Reranker
from index.search_engine import WeaviateCandidateStore
from index.store import CandidateStore, InMemoryCandidateStore
from index.vector_search import VectorSearchEngine

from .embedding import EmbeddingService, embed_candidates
from .evaluation import EvaluationService
from .llm import OpenAIRerankerModel
from .telemetry import InMemoryTelemetryStore, JsonlTelemetryStore, TelemetryStore

logger = logging.getLogger(__name__)


class CandidateSearchService:
    """
    Service facade used by the API routes.

    Holds one pipeline and the collaborators it was built from.
    """

    def __init__(
        self,
        store: CandidateStore,
        embedder: EmbeddingProvider,
        evaluation: EvaluationService,
        reranker: Optional[Reranker] = None,
        fusion: Optional[FusionEngine] = None,
        context_token_budget: Optional[int] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.evaluation = evaluation
        self.pipeline = HybridSearchPipeline(
            vector_engine=VectorSearchEngine(store, embedder),
            keyword_engine=KeywordSearchEngine(store),
            fusion=fusion or FusionEngine(),
            context_builder=ContextBuilder(),
            reranker=reranker,
            evaluation=evaluation,
            context_token_budget=context_token_budget,
            context_embedder=embedder,
        )

    async def initialize(self) -> None:
        """Load the embedding model and connect the candidate store."""
        if isinstance(self.embedder, EmbeddingService) and not self.embedder.is_initialized():
            logger.info("Initializing embedding service...")
            await self.embedder.initialize()

        if isinstance(self.store, WeaviateCandidateStore):
            await self.store.initialize()

    async def ingest_candidates(self, candidates: List[CandidateRecord]) -> Dict[str, int]:
        """
        Embed and index candidates.

        Args:
            candidates: Candidate records, with or without embeddings

        Returns:
            Dictionary with ingestion statistics
        """
        start_time = time.time()
        logger.info(f"Generating embeddings for {len(candidates)} candidates...")

        embedded = await embed_candidates(self.embedder, candidates)
        indexed = await self.store.index_candidates(embedded)
        stats = await self.store.stats()

        logger.info(f"Candidate ingestion completed in {time.time() - start_time:.2f}s")

        return {
            "candidates_loaded": indexed,
            "candidates_index_size": stats["total_candidates"],
        }

    async def search_candidates(self, **params) -> SearchOutcome:
        return await self.pipeline.search_candidates(**params)

    async def submit_feedback(self, feedback: UserFeedback) -> bool:
        return await self.evaluation.process_feedback(feedback)

    async def analytics(self, hours: int = 24) -> Dict:
        return await self.evaluation.get_performance_analytics(hours)

    async def recommendations(self) -> List[str]:
        return await self.evaluation.generate_recommendations()

    async def close(self) -> None:
        await self.evaluation.drain()
        self.store.close()


def create_search_service() -> CandidateSearchService:
    """
    Build the search service from environment configuration.

    Returns:
        A service whose ``initialize`` still has to be awaited
    """
    embedder = EmbeddingService(
        model_name=os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    )

    store_kind = os.getenv("CANDIDATE_STORE", "weaviate").lower()
    if store_kind == "memory":
        store: CandidateStore = InMemoryCandidateStore()
    elif store_kind == "weaviate":
        store = WeaviateCandidateStore()
    else:
        raise ValueError(
            f"Unknown candidate store: {store_kind}. Use 'weaviate' or 'memory'"
        )

    telemetry_path = os.getenv("TELEMETRY_PATH", "data/search_metrics.jsonl")
    telemetry: TelemetryStore = (
        JsonlTelemetryStore(telemetry_path) if telemetry_path else InMemoryTelemetryStore()
    )

    reranker = None
    if os.getenv("OPENAI_API_KEY"):
        reranker = Reranker(
            OpenAIRerankerModel(),
            max_concurrency=int(os.getenv("RERANK_CONCURRENCY", "5")),
            timeout=float(os.getenv("RERANK_TIMEOUT", "30")),
        )
    else:
        logger.warning("OPENAI_API_KEY not set, reranking disabled")

    budget = os.getenv("CONTEXT_TOKEN_BUDGET")

    return CandidateSearchService(
        store=store,
        embedder=embedder,
        evaluation=EvaluationService(telemetry, embedder),
        reranker=reranker,
        context_token_budget=int(budget) if budget else None,
    )
