"""
Completion model used by the reranker.

Wraps the OpenAI chat completions API behind the ``RerankerModel`` interface.
The client is created per instance and handed to the reranker, so tests can
swap in a scripted model.
"""

import logging
import os
from typing import Optional

from openai import AsyncOpenAI

from index.errors import RerankProviderError
from index.providers import RerankerModel

logger = logging.getLogger(__name__)


class OpenAIRerankerModel(RerankerModel):
    """Reranker model backed by an OpenAI chat completion model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 200,
        temperature: float = 0.1,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize the reranker model.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY)
            model: Chat model name (defaults to RERANK_MODEL)
            max_tokens: Reply length cap
            temperature: Sampling temperature
            client: Pre-built client, mainly for tests
        """
        self.model = model or os.getenv("RERANK_MODEL", "gpt-3.5-turbo")
        self.max_tokens = max_tokens
        self.temperature = temperature
        # single attempt per scoring call
        self.client = client or AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"), max_retries=0
        )

    async def score(self, prompt: str) -> str:
        """
        Send one scoring prompt and return the reply text.

        Raises:
            RerankProviderError: If the API call fails or returns no content
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            raise RerankProviderError(f"OpenAI API call failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise RerankProviderError("OpenAI returned an empty reply")

        logger.debug(f"Reranker reply: {content[:200]}")
        return content
