"""
Request and response models for the candidate retrieval API.

This module contains Pydantic models for candidate ingestion, candidate
search, user feedback and telemetry analytics.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from index.models import CandidateRecord, ContextChunk, RankedResult, UserFeedback


class CandidateInput(BaseModel):
    """Candidate profile as submitted for ingestion (embeddings are computed)."""

    id: str = Field(..., description="Unique candidate identifier")
    name: str = Field(..., description="Candidate full name")
    email: str = Field("", description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone number")
    title: Optional[str] = Field(None, description="Current job title")
    company: Optional[str] = Field(None, description="Current company")
    location: Optional[str] = Field(None, description="Current location")
    remote_preference: Optional[str] = Field(
        None, description="Remote work preference (remote, hybrid, onsite)"
    )
    years_experience: float = Field(0.0, ge=0, description="Years of experience")
    salary_expectation: Optional[int] = Field(None, description="Expected salary")
    skills: List[str] = Field(default_factory=list, description="Skill names")
    summary: Optional[str] = Field(None, description="Professional summary")
    resume_text: Optional[str] = Field(None, description="Full resume text")

    def to_record(self) -> CandidateRecord:
        return CandidateRecord(**self.model_dump())


class IngestRequest(BaseModel):
    """Request model for data ingestion endpoint."""

    candidates: List[CandidateInput] = Field(
        default_factory=list, description="List of candidates to ingest"
    )

    model_config = {"extra": "forbid"}


class IngestResponse(BaseModel):
    """Response model for data ingestion endpoint."""

    candidates_loaded: int = Field(
        ..., description="Number of candidates successfully loaded"
    )
    candidates_index_size: int = Field(
        ..., description="Total candidates in index after loading"
    )


class CandidateSearchRequest(BaseModel):
    """
    Candidate search request.

    Values are validated by the search pipeline so that an invalid query
    yields an error outcome rather than a 422.
    """

    job_description: str = Field(..., description="Job description to match")
    experience_level: Optional[str] = Field(
        None, description="junior, mid-level, senior, lead or executive"
    )
    required_skills: Optional[List[str]] = Field(
        None, description="Candidates must have at least one of these skills"
    )
    location: Optional[str] = Field(None, description="Preferred location")
    remote: Optional[bool] = Field(None, description="Whether remote work is allowed")
    max_results: int = Field(10, description="Number of results to return (1-100)")
    use_hybrid_search: bool = Field(True, description="Combine vector and keyword search")
    use_reranking: bool = Field(True, description="Rerank results with the LLM")

    model_config = {"extra": "forbid"}


class CandidateSummary(BaseModel):
    """Candidate fields returned with a search result."""

    id: str
    name: str
    email: str
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    remote_preference: Optional[str] = None
    years_experience: float
    salary_expectation: Optional[int] = None
    skills: List[str]


class SearchScores(BaseModel):
    """Score breakdown for a candidate search result."""

    match: float = Field(..., description="Weighted composite match score")
    profile: float = Field(..., description="Profile similarity")
    skills: float = Field(..., description="Skills similarity")
    experience: float = Field(..., description="Experience similarity")
    resume: float = Field(..., description="Resume similarity")
    keyword: float = Field(..., description="Raw keyword score")
    fused: float = Field(..., description="Reciprocal Rank Fusion score")
    rerank: float = Field(..., description="Final relevance score")


class CandidateSearchResult(BaseModel):
    """Single candidate search result with scores and explanation."""

    candidate: CandidateSummary = Field(..., description="Candidate profile data")
    scores: SearchScores = Field(..., description="Search score breakdown")
    match_quality: str = Field(..., description="Excellent, Good, Fair or Poor")
    retrieval_method: str = Field(..., description="vector, keyword or hybrid")
    reranked: bool = Field(..., description="Whether the LLM scored this result")
    explanation: str = Field(..., description="Why the candidate matches")
    context_chunks: List[ContextChunk] = Field(
        default_factory=list, description="Evidence the ranking was based on"
    )


class SearchSummary(BaseModel):
    """Aggregate statistics over the returned candidates."""

    total_candidates: int
    average_match_score: float
    excellent_matches: int
    good_matches: int


class CandidateSearchResponse(BaseModel):
    """Response model for candidate search endpoint."""

    query_id: str = Field(..., description="Id to reference in feedback")
    error: bool = Field(False, description="Whether the search failed")
    message: str = Field(..., description="Human readable outcome")
    search_criteria: Dict[str, object] = Field(default_factory=dict)
    retrieval_method: Optional[str] = Field(None, description="Method that produced results")
    warnings: List[str] = Field(default_factory=list)
    query_time_ms: float = Field(..., description="Query execution time in milliseconds")
    summary: SearchSummary
    results: List[CandidateSearchResult] = Field(
        ..., description="List of matching candidates"
    )


class FeedbackRequest(BaseModel):
    """User feedback on the results of an earlier search."""

    query_id: str = Field(..., description="Query id returned by the search")
    user_id: str = Field("anonymous", description="User giving the feedback")
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    relevant_candidates: List[str] = Field(default_factory=list)
    irrelevant_candidates: List[str] = Field(default_factory=list)
    feedback: Optional[str] = Field(None, description="Free-text feedback")

    def to_feedback(self) -> UserFeedback:
        return UserFeedback(**self.model_dump())


class FeedbackResponse(BaseModel):
    query_id: str
    accepted: bool = Field(..., description="False when the query id is unknown")


class MethodPerformance(BaseModel):
    count: int
    avg_score: float
    avg_time: float


class AnalyticsResponse(BaseModel):
    """Aggregated search telemetry."""

    time_range_hours: int
    total_queries: int
    average_response_time: float
    average_relevance_score: float
    average_rating: Optional[float] = None
    query_type_distribution: Dict[str, int] = Field(default_factory=dict)
    method_performance: Dict[str, MethodPerformance] = Field(default_factory=dict)


class RecommendationsResponse(BaseModel):
    recommendations: List[str]


def match_quality(score: float) -> str:
    """Label a match score in [0, 1]."""
    if score > 0.8:
        return "Excellent"
    if score > 0.6:
        return "Good"
    if score > 0.4:
        return "Fair"
    return "Poor"


def to_search_result(result: RankedResult) -> CandidateSearchResult:
    scored = result.candidate
    record = scored.candidate
    return CandidateSearchResult(
        candidate=CandidateSummary(
            **record.model_dump(include=set(CandidateSummary.model_fields))
        ),
        scores=SearchScores(
            match=scored.match_score,
            profile=scored.scores.profile,
            skills=scored.scores.skills,
            experience=scored.scores.experience,
            resume=scored.scores.resume,
            keyword=scored.scores.keyword,
            fused=scored.fused_score,
            rerank=result.rerank_score,
        ),
        match_quality=match_quality(scored.match_score),
        retrieval_method=scored.retrieval_method,
        reranked=result.reranked,
        explanation=result.explanation,
        context_chunks=result.context_chunks,
    )


def summarize(results: List[CandidateSearchResult]) -> SearchSummary:
    scores = [r.scores.match for r in results]
    return SearchSummary(
        total_candidates=len(results),
        average_match_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        excellent_matches=sum(1 for s in scores if s > 0.8),
        good_matches=sum(1 for s in scores if s > 0.6),
    )
