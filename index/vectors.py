"""Vector math helpers shared by the search engines and evaluation."""

from typing import Sequence, Union

import numpy as np

Vector = Union[Sequence[float], np.ndarray]


def cosine_similarity(vector_a: Vector, vector_b: Vector) -> float:
    """
    Cosine similarity between two vectors.

    Args:
        vector_a: First vector
        vector_b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero magnitude

    Raises:
        ValueError: If the vectors differ in length
    """
    a = np.asarray(vector_a, dtype=np.float64)
    b = np.asarray(vector_b, dtype=np.float64)

    if a.shape != b.shape:
        raise ValueError(
            f"Vectors must have the same length: {a.shape[0]} != {b.shape[0]}"
        )

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return min(max(similarity, -1.0), 1.0)
