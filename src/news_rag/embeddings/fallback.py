"""
Deterministic local embedding used when the remote endpoint is unavailable.

The vector is a histogram of character code points folded into ``dimension``
buckets, L2-normalized, plus a small bounded uniform noise so that texts with
identical histograms (anagrams, repeated boilerplate) do not produce exactly
identical vectors. The noise keeps a text's vector within cosine 0.99 of
itself across calls.
"""

import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class CharacterHistogramEmbedding:
    """Code-point histogram embedding. Satisfies the TextEmbedding protocol."""

    def __init__(
        self,
        dimension: int = 768,
        noise: float = 0.01,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Args:
            dimension: Output vector length
            noise: Total width of the uniform noise band ([-noise/2, noise/2])
            rng: Random generator (inject a seeded one for reproducible tests)
        """
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension
        self.noise = noise
        self._rng = rng or np.random.default_rng()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "fallback-char-histogram"

    def embed(self, text: str) -> List[float]:
        vector = np.zeros(self._dimension, dtype=np.float64)

        if text:
            codes = np.fromiter((ord(ch) for ch in text), dtype=np.int64, count=len(text))
            np.add.at(vector, codes % self._dimension, 1.0)

        magnitude = np.linalg.norm(vector)
        if magnitude > 0:
            vector /= magnitude

        if self.noise > 0:
            vector += (self._rng.random(self._dimension) - 0.5) * self.noise

        return vector.tolist()

    async def embed_document(self, text: str) -> List[float]:
        return self.embed(text)

    async def embed_documents(self, texts: List[str], batch_size: int = 10) -> List[List[float]]:
        return [self.embed(text) for text in texts]
