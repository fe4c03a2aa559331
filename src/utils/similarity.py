"""
Vector similarity helpers shared by contradiction detection and retrieval.
"""

from collections.abc import Sequence

import numpy as np


def normalize_l2(vector: Sequence[float]) -> np.ndarray:
    """Scale a vector to unit length. Zero vectors are returned unchanged."""
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0:
        return array
    return array / norm


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector is empty, has zero norm, or the
    dimensions differ.
    """
    if len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> list[float]:
    """
    Cosine similarity of one query against many vectors, in input order.

    Vectors are expected to share the query's dimension.
    """
    if not vectors:
        return []

    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = 1.0
    unit_query = normalize_l2(query)

    return [float(score) for score in (matrix / norms[:, None]) @ unit_query]
