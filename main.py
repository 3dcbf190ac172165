"""
Main entry point for the Candidate Retrieval Service.

Loads configuration from the environment (and a .env file) and serves the
FastAPI application with uvicorn.
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv

from api.app import create_app

# Load environment variables from .env file
load_dotenv()

log_level = os.getenv("LOG_LEVEL", "info").lower()
logging.getLogger().setLevel(log_level.upper())

app = create_app()

if __name__ == "__main__":
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    reload = os.getenv("API_RELOAD", "true").lower() == "true"

    uvicorn.run("main:app", host=host, port=port, reload=reload, log_level=log_level)
