"""
Embedding gateway.

Front door for every embedding request. Text is preprocessed, sent to the
remote embedder in capped batches, and any failure (missing key, HTTP error,
timeout, wrong dimension) is answered with the local fallback embedding.
The gateway never raises to its caller.
"""

import asyncio
import logging
import re
from typing import List, Optional

from news_rag.config import Settings
from news_rag.embeddings.fallback import CharacterHistogramEmbedding
from news_rag.embeddings.protocol import TextEmbedding
from news_rag.errors import AuthError, DegradedModeNotice
from news_rag.results import Fallback, Ok, ProviderResult, capture

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

SELF_TEST_TEXT = "Test sentence"


def preprocess_text(text: str, max_chars: int = 8192) -> str:
    """
    Normalize text before embedding.

    Collapses whitespace and newlines into single spaces, trims, and truncates
    to ``max_chars``. When truncating, the cut moves back to the last space if
    that space lies beyond 90% of the limit.
    """
    cleaned = _WHITESPACE.sub(" ", text or "").strip()

    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars]
        last_space = cleaned.rfind(" ")
        if last_space > max_chars * 0.9:
            cleaned = cleaned[:last_space]

    return cleaned


class EmbeddingGateway:
    """
    Remote embeddings with a deterministic local fallback.

    Modes:
    - remote: the remote embedder is tried first for every request
    - fallback: the remote embedder is missing or was rejected with an
      authentication error; every request uses the local fallback for the
      rest of the process
    """

    def __init__(
        self,
        remote: Optional[TextEmbedding] = None,
        dimension: int = 768,
        batch_size: int = 10,
        max_chars: int = 8192,
        timeout: Optional[float] = 10.0,
        batch_delay: float = 1.0,
        fallback: Optional[CharacterHistogramEmbedding] = None,
    ):
        self.remote = remote
        self._dimension = dimension
        self.batch_size = batch_size
        self.max_chars = max_chars
        self.timeout = timeout
        self.batch_delay = batch_delay
        self.fallback = fallback or CharacterHistogramEmbedding(dimension=dimension)

        if self.fallback.dimension != dimension:
            raise ValueError("Fallback embedder dimension must match gateway dimension")

        self.notice: Optional[DegradedModeNotice] = None
        self.remote_call_count = 0
        self.remote_success_count = 0
        self.fallback_count = 0

        if remote is None:
            self.notice = DegradedModeNotice("embedding", "no embedding API key configured").log()
        elif remote.dimension != dimension:
            raise ValueError(
                f"Remote embedder dimension {remote.dimension} does not match {dimension}"
            )

        logger.info(
            f"EmbeddingGateway initialized: mode={self.mode}, dimension={dimension}, "
            f"batch_size={batch_size}"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingGateway":
        remote = None
        api_key = settings.embedding_api_key_value
        if api_key:
            from news_rag.embeddings.openai_embedding import OpenAICompatibleEmbedding

            remote = OpenAICompatibleEmbedding(
                model=settings.embedding_model,
                api_key=api_key,
                base_url=settings.embedding_base_url,
                dimensions=settings.vector_dimension,
                timeout=settings.embedding_timeout,
            )

        return cls(
            remote=remote,
            dimension=settings.vector_dimension,
            batch_size=settings.embedding_batch_size,
            max_chars=settings.embedding_max_chars,
            timeout=settings.embedding_timeout,
            batch_delay=settings.embedding_batch_delay,
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def mode(self) -> str:
        return "fallback" if self.notice is not None else "remote"

    @property
    def model_name(self) -> str:
        if self.mode == "remote":
            return self.remote.model_name
        return self.fallback.model_name

    def preprocess(self, text: str) -> str:
        return preprocess_text(text, self.max_chars)

    def fallback_embedding(self, text: str) -> List[float]:
        self.fallback_count += 1
        return self.fallback.embed(text)

    def _disable_remote(self, reason: str) -> None:
        if self.notice is None:
            self.notice = DegradedModeNotice("embedding", reason).log()

    async def _call_remote(self, texts: List[str]) -> ProviderResult[List[List[float]]]:
        if self.mode == "fallback":
            return Fallback(reason=self.notice.reason)

        self.remote_call_count += 1
        result = await capture(
            self.remote.embed_documents(texts, batch_size=self.batch_size),
            provider="embedding",
            timeout=self.timeout,
        )

        if isinstance(result, Fallback):
            if isinstance(result.error, AuthError):
                self._disable_remote(f"authentication rejected: {result.error}")
            return result

        bad = [len(vector) for vector in result.value if len(vector) != self._dimension]
        if bad or len(result.value) != len(texts):
            return Fallback(
                reason=f"remote returned {len(result.value)} vectors with sizes {bad or 'ok'}"
            )

        self.remote_success_count += 1
        return result

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text. Always returns a vector of length ``dimension``.
        """
        cleaned = self.preprocess(text)
        if not cleaned:
            return self.fallback_embedding(cleaned)

        result = await self._call_remote([cleaned])
        if isinstance(result, Ok):
            return result.value[0]

        logger.warning(f"Embedding API failed, using fallback embedding: {result.reason}")
        return self.fallback_embedding(cleaned)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts in batches of ``batch_size``.

        A failed batch falls back per item; later batches still try the
        remote embedder. Batches are separated by ``batch_delay`` seconds.
        """
        cleaned_texts = [self.preprocess(text) for text in texts]
        embeddings: List[List[float]] = []

        for i in range(0, len(cleaned_texts), self.batch_size):
            batch = cleaned_texts[i : i + self.batch_size]
            batch_number = i // self.batch_size + 1

            if any(not text for text in batch):
                result = Fallback(reason="batch contains empty text")
            else:
                result = await self._call_remote(batch)

            if isinstance(result, Ok):
                embeddings.extend(result.value)
            else:
                logger.warning(f"Embedding batch {batch_number} fell back: {result.reason}")
                embeddings.extend(self.fallback_embedding(text) for text in batch)

            more_batches = i + self.batch_size < len(cleaned_texts)
            if more_batches and self.mode == "remote" and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        return embeddings

    async def self_test(self, timeout: Optional[float] = None) -> bool:
        """
        Probe the remote embedder.

        Returns:
            True if the remote embedder answered with a correctly sized vector
        """
        if self.mode == "fallback":
            logger.info("Embedding self-test skipped: running on fallback embeddings")
            return False

        result = await capture(
            self._call_remote([SELF_TEST_TEXT]), provider="embedding", timeout=timeout
        )
        passed = isinstance(result, Ok) and isinstance(result.value, Ok)
        if passed:
            logger.info(f"Embedding self-test passed ({self._dimension} dimensions)")
        else:
            logger.warning("Embedding self-test failed, requests will fall back when needed")
        return passed

    async def health_check(self) -> dict:
        return {
            "status": "healthy" if self.mode == "remote" else "fallback",
            "mode": self.mode,
            "model": self.model_name,
            "dimension": self._dimension,
        }

    def get_metrics(self) -> dict:
        """Remote/fallback counters."""
        metrics = {
            "embedding_remote_call_count": self.remote_call_count,
            "embedding_remote_success_count": self.remote_success_count,
            "embedding_fallback_count": self.fallback_count,
        }
        if self.remote_call_count > 0:
            success_rate = (self.remote_success_count / self.remote_call_count) * 100
            metrics["embedding_remote_success_rate_percent"] = round(success_rate, 2)
        return metrics
