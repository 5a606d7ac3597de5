"""Tests for the OpenAI-compatible embedding adapter."""

from unittest.mock import AsyncMock, Mock

import pytest

from news_rag.errors import TransientProviderError


def make_embedder(**kwargs):
    pytest.importorskip("openai")

    from news_rag.embeddings import OpenAICompatibleEmbedding

    return OpenAICompatibleEmbedding(api_key="jina_test_key", **kwargs)


def embedding_response(*items):
    return Mock(data=[Mock(index=index, embedding=vector) for index, vector in items])


def test_initialization_defaults():
    embedder = make_embedder()

    assert embedder.model_name == "jina-embeddings-v2-base-en"
    assert embedder.dimension == 768


def test_custom_model_and_dimensions():
    embedder = make_embedder(model="text-embedding-3-small", dimensions=512, base_url=None)

    assert embedder.model_name == "text-embedding-3-small"
    assert embedder.dimension == 512


@pytest.mark.asyncio
async def test_embed_documents_orders_by_index():
    embedder = make_embedder(dimensions=2)
    embedder._client.embeddings.create = AsyncMock(
        return_value=embedding_response((1, [0.0, 1.0]), (0, [1.0, 0.0]))
    )

    vectors = await embedder.embed_documents(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    embedder._client.embeddings.create.assert_awaited_once_with(
        model="jina-embeddings-v2-base-en", input=["first", "second"]
    )


@pytest.mark.asyncio
async def test_embed_documents_batches_requests():
    embedder = make_embedder(dimensions=1)
    embedder._client.embeddings.create = AsyncMock(
        side_effect=lambda model, input: embedding_response(
            *[(i, [float(i)]) for i in range(len(input))]
        )
    )

    vectors = await embedder.embed_documents(["a", "b", "c"], batch_size=2)

    assert len(vectors) == 3
    assert embedder._client.embeddings.create.await_count == 2


@pytest.mark.asyncio
async def test_requested_dimensions_are_sent():
    embedder = make_embedder(model="text-embedding-3-small", dimensions=2, request_dimensions=True)
    embedder._client.embeddings.create = AsyncMock(
        return_value=embedding_response((0, [1.0, 0.0]))
    )

    await embedder.embed_document("text")

    kwargs = embedder._client.embeddings.create.call_args.kwargs
    assert kwargs["dimensions"] == 2


@pytest.mark.asyncio
async def test_missing_vectors_raise_transient_error():
    embedder = make_embedder(dimensions=2)
    embedder._client.embeddings.create = AsyncMock(
        return_value=embedding_response((0, [1.0, 0.0]))
    )

    with pytest.raises(TransientProviderError):
        await embedder.embed_documents(["one", "two"])


@pytest.mark.asyncio
async def test_empty_input_makes_no_request():
    embedder = make_embedder()
    embedder._client.embeddings.create = AsyncMock()

    assert await embedder.embed_documents([]) == []
    embedder._client.embeddings.create.assert_not_awaited()
