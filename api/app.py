"""
FastAPI application factory.

This module creates and configures the FastAPI application with all
routes, middleware, and lifecycle management.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import feedback_router, ingest_router, search_router
from .services.hybrid_search import CandidateSearchService, create_search_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(service: Optional[CandidateSearchService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Search service to serve; built from the environment when omitted

    Returns:
        Configured FastAPI application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Initializes the search service on startup, waits for pending
        telemetry and closes the store on shutdown.
        """
        try:
            logger.info("Starting up application...")
            if getattr(app.state, "search_service", None) is None:
                app.state.search_service = create_search_service()
            await app.state.search_service.initialize()
            logger.info("Application startup complete")

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise
        finally:
            logger.info("Shutting down application...")
            search_service = getattr(app.state, "search_service", None)
            if search_service is not None:
                await search_service.close()

    app = FastAPI(
        title="Candidate Retrieval Service",
        description=(
            "Service for matching candidates to job descriptions using hybrid "
            "search, rank fusion and LLM reranking"
        ),
        lifespan=lifespan,
    )
    app.state.search_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", response_model=dict)
    async def root():
        return {
            "name": "Candidate Retrieval Service",
            "description": (
                "Service for matching candidates to job descriptions using hybrid "
                "search, rank fusion and LLM reranking"
            ),
            "endpoints": {
                "POST /ingest": "Embed and load candidate profiles",
                "POST /ingest/from-json": "Load candidate profiles from a JSON file",
                "POST /search/candidates": "Search candidates with a job description",
                "POST /feedback": "Rate the results of a search",
                "GET /analytics": "Aggregated search telemetry",
                "GET /analytics/recommendations": "Tuning suggestions",
            },
        }

    app.include_router(ingest_router)
    app.include_router(search_router)
    app.include_router(feedback_router)

    return app
