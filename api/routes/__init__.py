"""API route modules."""

from .feedback import router as feedback_router
from .ingest import router as ingest_router
from .search import router as search_router

__all__ = [
    "feedback_router",
    "ingest_router",
    "search_router",
]
