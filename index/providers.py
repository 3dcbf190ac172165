"""
Interfaces to the external model collaborators.

Implementations are injected into the pipeline components at construction;
see ``api.services.embedding`` and ``api.services.llm``.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List

import numpy as np


class EmbeddingProvider(ABC):
    """Turns text into a fixed-dimension vector."""

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """
        Embed a single text.

        Raises:
            EmbeddingUnavailable: If the provider cannot produce a vector
        """

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        """
        Embed several texts, one vector per text in input order.

        Providers with a native batch call should override this.
        """
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))


class RerankerModel(ABC):
    """Single-shot completion model used to score query/candidate pairs."""

    @abstractmethod
    async def score(self, prompt: str) -> str:
        """
        Return the raw model reply for a scoring prompt.

        Raises:
            RerankProviderError: If the model call fails
        """
