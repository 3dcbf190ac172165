"""
Feedback and analytics endpoints.

Feedback is attached to the telemetry record of an earlier search; analytics
aggregate the recorded telemetry.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_search_service
from api.models import (
    AnalyticsResponse,
    FeedbackRequest,
    FeedbackResponse,
    RecommendationsResponse,
)
from api.services.hybrid_search import CandidateSearchService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Evaluation"])


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    request: FeedbackRequest,
    service: CandidateSearchService = Depends(get_search_service),
):
    """
    Record user feedback for a search.

    Feedback for an unknown query id is accepted by the endpoint but not
    stored; ``accepted`` is False in that case.
    """
    accepted = await service.submit_feedback(request.to_feedback())
    return FeedbackResponse(query_id=request.query_id, accepted=accepted)


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    hours: int = Query(24, ge=1, le=24 * 90, description="Time range in hours"),
    service: CandidateSearchService = Depends(get_search_service),
):
    """Aggregate search telemetry over the last ``hours`` hours."""
    try:
        analytics = await service.analytics(hours)
        return AnalyticsResponse(time_range_hours=hours, **analytics)
    except Exception as e:
        logger.error(f"Analytics failed: {e}")
        raise HTTPException(status_code=500, detail=f"Analytics failed: {str(e)}")


@router.get("/analytics/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(
    service: CandidateSearchService = Depends(get_search_service),
):
    """Tuning suggestions derived from the last week of telemetry."""
    try:
        return RecommendationsResponse(
            recommendations=await service.recommendations()
        )
    except Exception as e:
        logger.error(f"Recommendations failed: {e}")
        raise HTTPException(
            status_code=500, detail=f"Recommendations failed: {str(e)}"
        )
