from typing import Sequence

import numpy as np

from news_rag.errors import ValidationError


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors: dot(a, b) / (|a| * |b|).

    Raises:
        ValidationError: If the vectors differ in length or either is all-zero
    """
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)

    if a.shape != b.shape:
        raise ValidationError("Vectors must have the same length")

    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0.0:
        raise ValidationError("Cosine similarity is undefined for a zero vector")

    return float(np.dot(a, b) / magnitude)
