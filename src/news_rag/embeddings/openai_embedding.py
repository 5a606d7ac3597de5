"""OpenAI-compatible embedding adapter (OpenAI, Jina, Azure, OpenRouter...)."""

import logging
from typing import List, Optional

from news_rag.errors import TransientProviderError

logger = logging.getLogger(__name__)


class OpenAICompatibleEmbedding:
    """
    Embedding adapter for any endpoint speaking the OpenAI embeddings API.

    Sends ``{model, input: [...]}`` and reads ``data[i].embedding``. Jina's
    ``/v1/embeddings`` endpoint uses the same shape, so it is the default.

    Example:
        >>> embedder = OpenAICompatibleEmbedding(
        ...     model="jina-embeddings-v2-base-en",
        ...     api_key="jina_...",
        ...     base_url="https://api.jina.ai/v1",
        ...     dimensions=768,
        ... )
        >>> vector = await embedder.embed_document("Central bank holds rates")
        >>> len(vector)
        768
    """

    def __init__(
        self,
        model: str = "jina-embeddings-v2-base-en",
        api_key: Optional[str] = None,
        base_url: Optional[str] = "https://api.jina.ai/v1",
        dimensions: int = 768,
        timeout: float = 10.0,
        request_dimensions: bool = False,
    ):
        """
        Initialize the embedder.

        Args:
            model: Embedding model name
            api_key: API key for the endpoint
            base_url: Endpoint base URL (None = official OpenAI)
            dimensions: Expected output dimension
            timeout: Request timeout in seconds
            request_dimensions: Send ``dimensions`` in the request (OpenAI 3-series only)
        """
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "openai is required for OpenAICompatibleEmbedding. Install with: pip install openai"
            ) from e

        self._model = model
        self._dimension = dimensions
        self._request_dimensions = request_dimensions

        # Retries are handled by the gateway's fallback policy, not the client
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

        logger.info(f"OpenAI-compatible embedder initialized: {model} ({dimensions} dimensions)")

    @property
    def dimension(self) -> int:
        """Vector dimension produced by this model."""
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    async def embed_document(self, text: str) -> List[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]

    async def embed_documents(self, texts: List[str], batch_size: int = 10) -> List[List[float]]:
        """
        Embed texts with one request per ``batch_size`` slice.

        Raises:
            TransientProviderError: If the response is missing vectors
            openai.OpenAIError: If the API request fails
        """
        if not texts:
            return []

        vectors: List[List[float]] = []
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            kwargs = {"model": self._model, "input": batch}
            if self._request_dimensions:
                kwargs["dimensions"] = self._dimension

            response = await self._client.embeddings.create(**kwargs)

            data = sorted(response.data, key=lambda item: item.index)
            if len(data) != len(batch):
                raise TransientProviderError(
                    f"Expected {len(batch)} embeddings, got {len(data)}", provider="embedding"
                )
            vectors.extend(item.embedding for item in data)

        return vectors
