"""FastAPI dependencies shared by the route modules."""

from fastapi import Request

from api.services.hybrid_search import CandidateSearchService


def get_search_service(request: Request) -> CandidateSearchService:
    """Search service created by the application factory."""
    return request.app.state.search_service
