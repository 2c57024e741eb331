"""OpenAI embeddings for documents and queries."""

from __future__ import annotations

from openai import APIConnectionError, APITimeoutError, OpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import settings

# Inputs per embeddings request
EMBED_BATCH_SIZE = 64

TRANSIENT_OPENAI_ERRORS = (APITimeoutError, APIConnectionError)


def get_openai_client() -> OpenAI:
    return OpenAI(
        api_key=settings.openai_api_key or None,
        timeout=settings.request_timeout_seconds,
        max_retries=0,
    )


@retry(
    reraise=True,
    stop=stop_after_attempt(settings.retry_attempts),
    wait=wait_exponential(multiplier=0.5, max=settings.retry_max_wait_seconds),
    retry=retry_if_exception_type(TRANSIENT_OPENAI_ERRORS),
)
def _embed_batch(client: OpenAI, texts: list[str], model: str) -> list[list[float]]:
    response = client.embeddings.create(
        input=texts, model=model, dimensions=settings.embedding_dimensions
    )
    return [item.embedding for item in response.data]


def embed_texts(
    texts: list[str],
    model: str | None = None,
    client: OpenAI | None = None,
) -> list[list[float]]:
    """Embed a list of texts using the OpenAI embeddings API.

    Args:
        texts: Strings to embed.
        model: OpenAI embedding model name.
        client: OpenAI client (created from settings if None).

    Returns:
        A list of embedding vectors (one per input text).
    """
    if not texts:
        return []
    if client is None:
        client = get_openai_client()
    model = model or settings.embedding_model

    embeddings: list[list[float]] = []
    for i in range(0, len(texts), EMBED_BATCH_SIZE):
        embeddings.extend(_embed_batch(client, texts[i : i + EMBED_BATCH_SIZE], model))
    return embeddings


def embed_query(query: str, model: str | None = None, client: OpenAI | None = None) -> list[float]:
    """Generate an embedding vector for the given query string."""
    return embed_texts([query], model=model, client=client)[0]
