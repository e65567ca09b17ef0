"""
Embedding service.

Uses Ollama to embed both user questions and ingested chunks with the same
model, so query and chunk vectors live in one space. Transport failures are
retried here; callers only ever see EmbeddingError.
"""
import logging
import re
from typing import List, Optional

import httpx
from django.conf import settings

from apps.indexing.retry import (
    aretry_with_backoff,
    EMBEDDING_RETRY_CONFIG,
    QUERY_EMBEDDING_RETRY_CONFIG,
    RetryExhausted,
)

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 2000


class EmbeddingError(Exception):
    """Raised when embedding generation fails."""
    pass


class QueryValidationError(Exception):
    """Raised when query validation fails."""
    pass


def normalize_query(query: str) -> str:
    """
    Normalize a user query for embedding.

    - Strip leading/trailing whitespace
    - Collapse multiple whitespace to single space
    - Raise if empty or too long

    Raises:
        QueryValidationError: If query is empty after normalization
    """
    if not query or not isinstance(query, str):
        raise QueryValidationError("Query cannot be empty")

    normalized = re.sub(r'\s+', ' ', query.strip())

    if not normalized:
        raise QueryValidationError("Query cannot be empty")

    if len(normalized) > MAX_QUERY_LENGTH:
        raise QueryValidationError(f"Query too long (max {MAX_QUERY_LENGTH} characters)")

    return normalized


def _expected_dimension() -> int:
    return getattr(settings, 'EMBEDDING_DIMENSION', 768)


async def _request_embedding(client: httpx.AsyncClient, text: str) -> List[float]:
    ollama_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
    model = getattr(settings, 'OLLAMA_EMBED_MODEL', 'nomic-embed-text')

    response = await client.post(
        f"{ollama_url}/api/embeddings",
        json={"model": model, "prompt": text},
    )
    response.raise_for_status()

    # Ollama /api/embeddings returns {"embedding": [...]}
    embedding = response.json().get("embedding")
    if not embedding:
        raise EmbeddingError("Ollama returned empty embedding")

    expected = _expected_dimension()
    if len(embedding) != expected:
        logger.warning(f"Embedding dimension mismatch: expected {expected}, got {len(embedding)}")

    return embedding


async def _embed_with_retry(client: httpx.AsyncClient, text: str, config: dict) -> List[float]:
    try:
        return await aretry_with_backoff(
            lambda: _request_embedding(client, text),
            config=config,
            exceptions=(httpx.HTTPError, EmbeddingError),
        )
    except RetryExhausted as e:
        logger.error(f"Embedding failed after {e.attempts} attempts: {e.last_exception}")
        raise EmbeddingError("Embedding service unavailable") from e.last_exception
    except httpx.HTTPStatusError as e:
        logger.error(f"Ollama embedding request failed: {e}")
        raise EmbeddingError(f"Embedding service error: {e.response.status_code}")
    except httpx.RequestError as e:
        logger.error(f"Ollama connection error: {e}")
        raise EmbeddingError("Could not connect to embedding service")
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Unexpected Ollama response format: {e}")
        raise EmbeddingError("Invalid response from embedding service")


def _client(transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
    timeout = float(getattr(settings, 'OLLAMA_EMBED_TIMEOUT', 120))
    return httpx.AsyncClient(timeout=timeout, transport=transport)


async def embed_query(
    query: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[float]:
    """
    Embed a normalized user question.

    Raises:
        EmbeddingError: If the embedding service cannot produce a vector
    """
    async with _client(transport) as client:
        embedding = await _embed_with_retry(client, query, QUERY_EMBEDDING_RETRY_CONFIG)
    logger.debug(f"Generated query embedding with {len(embedding)} dimensions")
    return embedding


async def embed_documents(
    texts: List[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[List[float]]:
    """
    Embed chunk texts in order.

    Ollama has no batch endpoint, so texts are embedded sequentially over
    one connection. Any failure aborts the whole batch.
    """
    vectors = []
    async with _client(transport) as client:
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingError(f"Cannot embed empty text (chunk {i})")
            vectors.append(await _embed_with_retry(client, text, EMBEDDING_RETRY_CONFIG))
            if (i + 1) % 25 == 0:
                logger.info(f"Embedded {i + 1}/{len(texts)} chunks")
    return vectors
