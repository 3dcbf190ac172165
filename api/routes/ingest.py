"""
Candidate ingestion endpoints.

This module provides endpoints for embedding candidate profiles and loading
them into the candidate store.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_search_service
from api.models import CandidateInput, IngestRequest, IngestResponse
from api.services.hybrid_search import CandidateSearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["Data Ingestion"])


@router.post("", response_model=IngestResponse)
async def ingest_data(
    request: IngestRequest,
    service: CandidateSearchService = Depends(get_search_service),
):
    """
    Embed candidates and add them to the candidate store.

    Args:
        request: IngestRequest containing candidate profiles

    Returns:
        IngestResponse with ingestion statistics

    Raises:
        HTTPException: If ingestion fails
    """
    try:
        logger.info(f"Ingesting {len(request.candidates)} candidates")

        records = [candidate.to_record() for candidate in request.candidates]
        stats = await service.ingest_candidates(records)

        return IngestResponse(**stats)

    except Exception as e:
        logger.error(f"Ingestion failed: {e}")
        raise HTTPException(status_code=500, detail=f"Data ingestion failed: {str(e)}")


@router.post("/from-json", response_model=IngestResponse)
async def ingest_from_file(
    candidates_file: str = Query(
        "data/candidates.json", description="Path to candidates JSON file"
    ),
    service: CandidateSearchService = Depends(get_search_service),
):
    """
    Load candidates from a JSON file (utility endpoint for testing).

    Args:
        candidates_file: Path to a JSON array of candidate profiles

    Returns:
        IngestResponse with ingestion statistics

    Raises:
        HTTPException: If the file is missing, malformed or ingestion fails
    """
    logger.info(f"Loading candidates from file: {candidates_file}")

    try:
        with open(candidates_file, "r", encoding="utf-8") as f:
            candidates_json = json.load(f)
        candidates = [CandidateInput(**candidate) for candidate in candidates_json]
    except FileNotFoundError:
        raise HTTPException(
            status_code=404, detail=f"Candidates file {candidates_file} not found"
        )
    except Exception as e:
        raise HTTPException(
            status_code=400, detail=f"Error loading candidates file: {str(e)}"
        )

    return await ingest_data(IngestRequest(candidates=candidates), service)
