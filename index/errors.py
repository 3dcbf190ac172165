"""
Error taxonomy for the retrieval pipeline.

Optional stages (reranking, telemetry) recover from their errors locally;
mandatory stages (query validation, retrieval) turn them into error outcomes.
"""


class RetrievalError(RuntimeError):
    """Base class for retrieval pipeline errors."""


class InvalidQuery(RetrievalError):
    """The job description is empty or otherwise unusable."""


class EmbeddingUnavailable(RetrievalError):
    """The embedding provider could not produce a vector."""


class RerankError(RetrievalError):
    """Base class for reranking failures."""


class RerankParseError(RerankError):
    """The reranker model reply did not follow the Score/Explanation format."""


class RerankProviderError(RerankError):
    """The reranker model call failed or timed out."""


class TelemetryWriteError(RetrievalError):
    """Search metrics or feedback could not be persisted."""
