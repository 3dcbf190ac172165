"""
Candidate search endpoint.

Runs the hybrid retrieval pipeline for a job description and returns the
ranked candidates with score breakdowns and explanations.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_search_service
from api.models import (
    CandidateSearchRequest,
    CandidateSearchResponse,
    summarize,
    to_search_result,
)
from api.services.hybrid_search import CandidateSearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])


@router.post("/candidates", response_model=CandidateSearchResponse)
async def search_candidates(
    request: CandidateSearchRequest,
    service: CandidateSearchService = Depends(get_search_service),
):
    """
    Search candidates for a job description.

    A search that could not run (invalid query, no search engine available)
    is returned with ``error`` set rather than as an HTTP error.

    Args:
        request: Job description and search options

    Returns:
        CandidateSearchResponse with ranked candidates and metadata

    Raises:
        HTTPException: If the search fails unexpectedly
    """
    try:
        logger.info(
            f"Searching candidates for: '{request.job_description[:100]}', "
            f"k={request.max_results}"
        )

        params = request.model_dump()
        if params["required_skills"] is not None:
            params["required_skills"] = tuple(params["required_skills"])

        outcome = await service.search_candidates(**params)
        results = [to_search_result(result) for result in outcome.results]

        return CandidateSearchResponse(
            query_id=outcome.query_id,
            error=outcome.error,
            message=outcome.message,
            search_criteria=outcome.search_criteria,
            retrieval_method=outcome.retrieval_method,
            warnings=outcome.warnings,
            query_time_ms=outcome.query_time_ms,
            summary=summarize(results),
            results=results,
        )

    except Exception as e:
        logger.error(f"Candidate search failed: {e}")
        raise HTTPException(
            status_code=500, detail=f"Candidate search failed: {str(e)}"
        )
