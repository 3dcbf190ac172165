"""
Typed records flowing through the retrieval pipeline.

Raw store rows are parsed into these models right after retrieval so that
every stage downstream works with validated, strongly-typed data.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import InvalidQuery

EMBEDDING_FIELDS: Tuple[str, ...] = ("profile", "skills", "experience", "resume")

RetrievalMethod = Literal["vector", "keyword", "hybrid"]
ChunkType = Literal["profile", "skills", "experience", "resume"]
QueryType = Literal["technical", "experience", "location", "general"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CandidateRecord(BaseModel):
    """Candidate profile as held by the candidate store."""

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
    years_experience: float = Field(0.0, description="Years of experience")
    salary_expectation: Optional[int] = Field(None, description="Expected salary")
    skills: List[str] = Field(default_factory=list, description="Skill names")
    summary: Optional[str] = Field(None, description="Professional summary")
    resume_text: Optional[str] = Field(None, description="Full resume text")
    embeddings: Dict[str, List[float]] = Field(
        default_factory=dict,
        description="Embedding vectors keyed by field (profile, skills, ...)",
    )

    def has_embedding(self, field: str) -> bool:
        return bool(self.embeddings.get(field))

    @property
    def normalized_skills(self) -> List[str]:
        return [skill.strip().lower() for skill in self.skills if skill.strip()]


class SearchQuery(BaseModel):
    """Validated, immutable candidate search request."""

    model_config = {"frozen": True}

    job_description: str = Field(..., description="Job description to match")
    experience_level: Optional[str] = Field(
        None, description="Experience band (junior, mid-level, senior, lead, ...)"
    )
    required_skills: Optional[Tuple[str, ...]] = Field(
        None, description="Skills of which a candidate must have at least one"
    )
    location: Optional[str] = Field(None, description="Location substring filter")
    remote: Optional[bool] = Field(
        None, description="Remote flag; False excludes remote-only matches"
    )
    max_results: int = Field(10, ge=1, le=100, description="Result count cap")
    use_hybrid_search: bool = Field(True, description="Run keyword search too")
    use_reranking: bool = Field(True, description="Rerank with the LLM")

    @field_validator("job_description")
    @classmethod
    def _job_description_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Job description cannot be empty")
        return value

    def criteria(self) -> Dict[str, object]:
        """Search criteria echoed back to callers, description truncated."""
        description = self.job_description
        if len(description) > 200:
            description = description[:200] + "..."
        return {
            "job_description": description,
            "experience_level": self.experience_level,
            "required_skills": list(self.required_skills or []),
            "location": self.location,
            "remote": self.remote,
            "max_results": self.max_results,
        }


def build_search_query(**params) -> SearchQuery:
    """
    Build a SearchQuery, converting validation failures to InvalidQuery.

    Raises:
        InvalidQuery: If the parameters do not form a valid query
    """
    try:
        return SearchQuery(**params)
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise InvalidQuery(messages) from e


class FieldScores(BaseModel):
    """Per-field similarity and keyword sub-scores."""

    profile: float = 0.0
    skills: float = 0.0
    experience: float = 0.0
    resume: float = 0.0
    keyword: float = 0.0

    def merge_max(self, other: "FieldScores") -> "FieldScores":
        return FieldScores(
            profile=max(self.profile, other.profile),
            skills=max(self.skills, other.skills),
            experience=max(self.experience, other.experience),
            resume=max(self.resume, other.resume),
            keyword=max(self.keyword, other.keyword),
        )


class ScoredCandidate(BaseModel):
    """A candidate with its sub-scores, tagged with the producing method."""

    candidate: CandidateRecord
    scores: FieldScores = Field(default_factory=FieldScores)
    match_score: float = Field(..., ge=0.0, le=1.0)
    retrieval_method: RetrievalMethod
    fused_score: float = 0.0


class ChunkMetadata(BaseModel):
    source: str
    chunk_size: int
    chunked_at: datetime


class ContextChunk(BaseModel):
    """Typed evidence fragment for one candidate."""

    id: str
    candidate_id: str
    type: ChunkType
    content: str
    relevance_score: float
    metadata: ChunkMetadata


class RankedResult(BaseModel):
    """Terminal pipeline output for one candidate."""

    candidate: ScoredCandidate
    context_chunks: List[ContextChunk] = Field(default_factory=list)
    rerank_score: float
    explanation: str
    reranked: bool = True


class EvaluationMetrics(BaseModel):
    precision: float
    recall: float
    f1_score: float
    context_relevancy: float
    diversity_score: float
    average_match_score: float
    top_result_score: float


class UserFeedback(BaseModel):
    """Feedback attached to an earlier search by its query id."""

    query_id: str = Field(..., description="Query the feedback refers to")
    user_id: str = Field("anonymous", description="User giving the feedback")
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    relevant_candidates: List[str] = Field(default_factory=list)
    irrelevant_candidates: List[str] = Field(default_factory=list)
    feedback: Optional[str] = Field(None, description="Free-text feedback")
    timestamp: datetime = Field(default_factory=_utcnow)


class SearchMetrics(BaseModel):
    """Per-query telemetry record."""

    query_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    query: str
    query_type: QueryType
    retrieval_method: RetrievalMethod
    results_count: int
    avg_match_score: float
    top_result_score: float
    execution_time_ms: float
    result_ids: List[str] = Field(default_factory=list)
    user_feedback: Optional[UserFeedback] = None
    evaluation_metrics: Optional[EvaluationMetrics] = None


class SearchOutcome(BaseModel):
    """Result of one pipeline run: either ranked results or an error."""

    query_id: str
    error: bool = False
    message: str
    search_criteria: Dict[str, object] = Field(default_factory=dict)
    results: List[RankedResult] = Field(default_factory=list)
    retrieval_method: Optional[RetrievalMethod] = None
    warnings: List[str] = Field(default_factory=list)
    query_time_ms: float = 0.0
