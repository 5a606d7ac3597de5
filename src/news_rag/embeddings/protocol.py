"""
Text embedding protocol for news-rag.

Provides a unified interface for embedding text into dense vectors
for semantic similarity search.
"""

from typing import List, Protocol

from typing_extensions import runtime_checkable


@runtime_checkable
class TextEmbedding(Protocol):
    """
    Protocol for text embedding providers.

    Implementations turn strings into dense vectors of a fixed dimension.
    The remote adapter and the local fallback both satisfy it, which lets the
    EmbeddingGateway treat them uniformly.

    Example:
        >>> embedder = CharacterHistogramEmbedding(dimension=768)
        >>> vector = await embedder.embed_document("Markets rallied today")
        >>> len(vector) == embedder.dimension
        True
    """

    @property
    def dimension(self) -> int:
        """
        Vector dimension produced by this embedder.

        Must match the vector index collection size.
        """
        ...

    @property
    def model_name(self) -> str:
        """Identifier of the embedding model."""
        ...

    async def embed_document(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Preprocessed text to embed

        Returns:
            Embedding vector of length ``dimension``

        Raises:
            ProviderError: If a remote call fails
        """
        ...

    async def embed_documents(self, texts: List[str], batch_size: int = 10) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in one request where possible.

        Args:
            texts: Preprocessed texts
            batch_size: Maximum texts per request

        Returns:
            List of embedding vectors (same order as input)

        Raises:
            ProviderError: If a remote call fails
        """
        ...
