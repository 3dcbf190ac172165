"""
Embedding service using sentence-transformers.

This module provides the text embedding provider for the vector search
engine and the per-field text builders used when candidates are ingested.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from index.errors import EmbeddingUnavailable
from index.models import CandidateRecord
from index.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingService(EmbeddingProvider):
    """
    Service for generating text embeddings using sentence-transformers.

    Uses a lightweight model suitable for job-candidate matching.
    """

    def __init__(
        self, model_name: str = "all-MiniLM-L6-v2", device: Optional[str] = None
    ):
        """
        Initialize the embedding service.

        Args:
            model_name: Name of the sentence-transformer model to use
            device: Device to run the model on ('cuda', 'cpu', or None for auto)
        """
        self.model_name = model_name
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.model: Optional[SentenceTransformer] = None
        self.embedding_dim: int = 384

    async def initialize(self) -> None:
        """
        Load the embedding model asynchronously.

        Raises:
            RuntimeError: If model initialization fails
        """
        try:
            logger.info(f"Loading embedding model: {self.model_name} on {self.device}")

            loop = asyncio.get_running_loop()
            self.model = await loop.run_in_executor(
                None, lambda: SentenceTransformer(self.model_name, device=self.device)
            )

            test_embedding = await self.embed("test")
            self.embedding_dim = len(test_embedding)

        except Exception as e:
            raise RuntimeError(f"Embedding model initialization failed: {e}")

    async def embed(self, text: str) -> np.ndarray:
        """
        Generate the embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Numpy array containing the text embedding

        Raises:
            EmbeddingUnavailable: If the model is not loaded or encoding fails
        """
        if self.model is None:
            raise EmbeddingUnavailable(
                "Embedding model not initialized. Call initialize() first."
            )

        try:
            loop = asyncio.get_running_loop()
            embedding = await loop.run_in_executor(
                None, lambda: self.model.encode(text.strip(), convert_to_numpy=True)
            )
            return embedding.astype(np.float32)

        except Exception as e:
            raise EmbeddingUnavailable(f"Text encoding failed: {e}") from e

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        """
        Generate embeddings for multiple texts in one model call.

        Raises:
            EmbeddingUnavailable: If the model is not loaded or encoding fails
        """
        if self.model is None:
            raise EmbeddingUnavailable(
                "Embedding model not initialized. Call initialize() first."
            )

        if not texts:
            return []

        try:
            loop = asyncio.get_running_loop()
            embeddings = await loop.run_in_executor(
                None,
                lambda: self.model.encode(texts, convert_to_numpy=True, batch_size=32),
            )
            return [emb.astype(np.float32) for emb in embeddings]

        except Exception as e:
            raise EmbeddingUnavailable(f"Batch text encoding failed: {e}") from e

    def is_initialized(self) -> bool:
        return self.model is not None


def candidate_field_texts(candidate: CandidateRecord) -> Dict[str, str]:
    """
    Build the text embedded for each candidate field.

    Args:
        candidate: Candidate record

    Returns:
        Mapping of field name (profile, skills, experience, resume) to text;
        fields without any text are left out
    """
    experience = f"{candidate.years_experience:g} years of experience"

    profile = ". ".join(
        part
        for part in [candidate.name, candidate.title, candidate.summary, experience]
        if part
    )
    experience_text = ". ".join(
        part for part in [candidate.title, experience, candidate.summary] if part
    )

    texts = {
        "profile": profile,
        "experience": experience_text,
        "resume": candidate.resume_text or profile,
    }
    if candidate.skills:
        texts["skills"] = ", ".join(candidate.skills)
    return texts


async def embed_candidates(
    provider: EmbeddingProvider, candidates: List[CandidateRecord]
) -> List[CandidateRecord]:
    """
    Embed the field texts of all candidates in a single batch.

    Args:
        provider: Embedding provider
        candidates: Candidate records to embed

    Returns:
        Copies of the candidates with their field embeddings set, in input order
    """
    field_texts = [candidate_field_texts(c) for c in candidates]
    flat = [text for texts in field_texts for text in texts.values()]
    vectors = iter(await provider.embed_batch(flat))

    embedded = []
    for candidate, texts in zip(candidates, field_texts):
        embeddings = dict(candidate.embeddings)
        for field in texts:
            embeddings[field] = np.asarray(next(vectors), dtype=np.float32).tolist()
        embedded.append(candidate.model_copy(update={"embeddings": embeddings}))
    return embedded
