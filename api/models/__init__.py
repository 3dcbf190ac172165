"""API models for the candidate retrieval service."""

from .schemas import (
    AnalyticsResponse,
    CandidateInput,
    CandidateSearchRequest,
    CandidateSearchResponse,
    CandidateSearchResult,
    CandidateSummary,
    FeedbackRequest,
    FeedbackResponse,
    IngestRequest,
    IngestResponse,
    MethodPerformance,
    RecommendationsResponse,
    SearchScores,
    SearchSummary,
    match_quality,
    summarize,
    to_search_result,
)

__all__ = [
    "CandidateInput",
    "IngestRequest",
    "IngestResponse",
    "CandidateSearchRequest",
    "CandidateSummary",
    "SearchScores",
    "CandidateSearchResult",
    "SearchSummary",
    "CandidateSearchResponse",
    "FeedbackRequest",
    "FeedbackResponse",
    "MethodPerformance",
    "AnalyticsResponse",
    "RecommendationsResponse",
    "match_quality",
    "summarize",
    "to_search_result",
]
