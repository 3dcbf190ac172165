"""
Hybrid candidate retrieval pipeline.

Runs vector and keyword search concurrently, fuses their rankings with
Reciprocal Rank Fusion, assembles context chunks and reranks with an LLM.
Optional stages degrade locally; the caller always receives a SearchOutcome.
"""

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .context import ContextBuilder
from .errors import EmbeddingUnavailable, InvalidQuery
from .fusion import FusionEngine
from .keyword_search import KeywordSearchEngine
from .models import (
    ContextChunk,
    RankedResult,
    ScoredCandidate,
    SearchOutcome,
    SearchQuery,
    build_search_query,
)
from .providers import EmbeddingProvider
from .reranker import DISABLED_EXPLANATION, Reranker, fallback_result
from .vector_search import VectorSearchEngine

if TYPE_CHECKING:
    from api.services.evaluation import EvaluationService

logger = logging.getLogger(__name__)


class EngineOutcome:
    """Results of one search engine, or the error that stopped it."""

    def __init__(
        self,
        method: str,
        results: Optional[List[ScoredCandidate]] = None,
        error: Optional[Exception] = None,
    ):
        self.method = method
        self.results = results or []
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


class HybridSearchPipeline:
    """
    End-to-end candidate search.

    All collaborators are passed in; nothing is created at module level.
    """

    def __init__(
        self,
        vector_engine: VectorSearchEngine,
        keyword_engine: KeywordSearchEngine,
        fusion: Optional[FusionEngine] = None,
        context_builder: Optional[ContextBuilder] = None,
        reranker: Optional[Reranker] = None,
        evaluation: Optional["EvaluationService"] = None,
        pool_factor: int = 3,
        context_token_budget: Optional[int] = None,
        context_embedder: Optional[EmbeddingProvider] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            vector_engine: Multi-field vector search engine
            keyword_engine: Keyword fallback search engine
            fusion: Rank fusion engine (RRF with k=60 by default)
            context_builder: Context chunk builder
            reranker: LLM reranker; None keeps the fused order
            evaluation: Telemetry recorder; None disables telemetry
            pool_factor: Candidates retrieved per requested result
            context_token_budget: When set, chunks are trimmed to this budget
                by query relevance before reranking
            context_embedder: Embedder used for trimming chunks
        """
        self.vector_engine = vector_engine
        self.keyword_engine = keyword_engine
        self.fusion = fusion or FusionEngine()
        self.context_builder = context_builder or ContextBuilder()
        self.reranker = reranker
        self.evaluation = evaluation
        self.pool_factor = max(1, pool_factor)
        self.context_token_budget = context_token_budget
        self.context_embedder = context_embedder

    async def search_candidates(self, **params) -> SearchOutcome:
        """
        Validate raw search parameters and run the search.

        Invalid parameters produce an error outcome instead of an exception.
        """
        query_id = uuid.uuid4().hex
        try:
            query = build_search_query(**params)
        except InvalidQuery as e:
            logger.warning(f"Rejected invalid query [{query_id}]: {e}")
            criteria = {k: v for k, v in params.items() if k != "job_description"}
            criteria["job_description"] = str(params.get("job_description") or "")[:200]
            return SearchOutcome(
                query_id=query_id,
                error=True,
                message=f"Invalid query: {e}",
                search_criteria=criteria,
            )
        return await self.search(query, query_id=query_id)

    async def search(
        self, query: SearchQuery, query_id: Optional[str] = None
    ) -> SearchOutcome:
        """
        Run the full pipeline for a validated query.

        Args:
            query: Validated search query
            query_id: Telemetry key (generated when omitted)

        Returns:
            SearchOutcome with ranked results, or with ``error`` set and an
            empty result list when no search engine could run
        """
        query_id = query_id or uuid.uuid4().hex
        start_time = time.perf_counter()
        pool_size = query.max_results * self.pool_factor
        warnings: List[str] = []

        logger.info(
            f"Searching candidates [{query_id}]: "
            f"'{query.job_description[:100]}', k={query.max_results}, "
            f"hybrid={query.use_hybrid_search}"
        )

        vector, keyword = await self._retrieve(query, pool_size)

        if not vector.ok:
            warnings.append(f"Vector search unavailable: {vector.error}")
        if not keyword.ok:
            warnings.append(f"Keyword search failed: {keyword.error}")

        engines_run = [vector] + ([keyword] if query.use_hybrid_search else [])
        if not any(engine.ok for engine in engines_run):
            elapsed = (time.perf_counter() - start_time) * 1000
            message = "; ".join(str(e.error) for e in engines_run)
            logger.error(f"All search engines failed [{query_id}]: {message}")
            return SearchOutcome(
                query_id=query_id,
                error=True,
                message=f"Error searching candidates: {message}",
                search_criteria=query.criteria(),
                warnings=warnings,
                query_time_ms=elapsed,
            )

        if query.use_hybrid_search:
            fused = self.fusion.fuse(vector.results, keyword.results)
            if vector.ok and keyword.ok:
                method = "hybrid"
            else:
                method = "vector" if vector.ok else "keyword"
        else:
            fused = self.fusion.fuse(vector.results)
            method = "vector"
        fused = fused[:pool_size]

        if query.use_reranking and self.reranker is None:
            warnings.append("Reranker not configured; results keep fused order")

        chunks = await self._build_context(query, fused)
        ranked = await self._rank(query, fused, chunks)

        elapsed = (time.perf_counter() - start_time) * 1000
        if self.evaluation is not None:
            self.evaluation.record_search(
                query_id, query.job_description, ranked, method, elapsed
            )

        if ranked:
            message = f"Found {len(ranked)} matching candidates"
        else:
            message = "No matching candidates found for the given job description"

        logger.info(
            f"Candidate search completed in {elapsed:.2f}ms [{query_id}], "
            f"found {len(ranked)} results via {method}"
        )

        return SearchOutcome(
            query_id=query_id,
            message=message,
            search_criteria=query.criteria(),
            results=ranked,
            retrieval_method=method,
            warnings=warnings,
            query_time_ms=elapsed,
        )

    async def _retrieve(
        self, query: SearchQuery, pool_size: int
    ) -> Tuple[EngineOutcome, EngineOutcome]:
        tasks = [self._run_engine(self.vector_engine, query, pool_size)]
        if query.use_hybrid_search:
            tasks.append(self._run_engine(self.keyword_engine, query, pool_size))

        outcomes = await asyncio.gather(*tasks)
        vector = outcomes[0]
        keyword = outcomes[1] if len(outcomes) > 1 else EngineOutcome("keyword")
        return vector, keyword

    async def _run_engine(self, engine, query: SearchQuery, limit: int) -> EngineOutcome:
        try:
            return EngineOutcome(engine.method, await engine.search(query, limit))
        except EmbeddingUnavailable as e:
            logger.warning(f"{engine.method} search degraded, embeddings unavailable: {e}")
            return EngineOutcome(engine.method, error=e)
        except Exception as e:
            logger.error(f"{engine.method} search failed: {e}")
            return EngineOutcome(engine.method, error=e)

    async def _build_context(
        self, query: SearchQuery, candidates: List[ScoredCandidate]
    ) -> Dict[str, List[ContextChunk]]:
        chunks = self.context_builder.build_all(candidates)

        if self.context_token_budget and self.context_embedder is not None:
            ids = list(chunks)
            optimized = await asyncio.gather(
                *(
                    self.context_builder.optimize_context(
                        chunks[cid],
                        query.job_description,
                        self.context_embedder,
                        self.context_token_budget,
                    )
                    for cid in ids
                )
            )
            chunks = dict(zip(ids, optimized))

        for candidate_id, candidate_chunks in chunks.items():
            assessment = self.context_builder.assess_context_quality(candidate_chunks)
            if assessment["quality"] == "low":
                logger.debug(
                    f"Low context quality for candidate {candidate_id}: "
                    f"{assessment['issues']}"
                )

        return chunks

    async def _rank(
        self,
        query: SearchQuery,
        candidates: List[ScoredCandidate],
        chunks: Dict[str, List[ContextChunk]],
    ) -> List[RankedResult]:
        if query.use_reranking and self.reranker is not None:
            return await self.reranker.rerank(
                query.job_description, candidates, chunks, top_k=query.max_results
            )

        return [
            fallback_result(c, chunks.get(c.candidate.id, []), DISABLED_EXPLANATION)
            for c in candidates[: query.max_results]
        ]
