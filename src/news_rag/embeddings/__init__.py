"""
Text embedding for news-rag.

- EmbeddingGateway: preprocessing, batching and fallback policy
- CharacterHistogramEmbedding: deterministic local fallback
- OpenAICompatibleEmbedding: OpenAI-style embedding API (Jina by default)
"""

from news_rag.embeddings.fallback import CharacterHistogramEmbedding
from news_rag.embeddings.gateway import EmbeddingGateway, preprocess_text
from news_rag.embeddings.openai_embedding import OpenAICompatibleEmbedding
from news_rag.embeddings.protocol import TextEmbedding
from news_rag.utils.vectors import cosine_similarity

__all__ = [
    "TextEmbedding",
    "EmbeddingGateway",
    "CharacterHistogramEmbedding",
    "OpenAICompatibleEmbedding",
    "preprocess_text",
    "cosine_similarity",
]
