"""Service modules for the API."""

from .embedding import EmbeddingService
from .evaluation import EvaluationService
from .hybrid_search import CandidateSearchService, create_search_service

__all__ = [
    "EmbeddingService",
    "EvaluationService",
    "CandidateSearchService",
    "create_search_service",
]
