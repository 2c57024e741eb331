from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    voyage_api_key: str = ""  # Optional: without it the cross-encoder always fails over

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    rag_table: str = "rag_documents"
    match_function: str = "match_rag_documents"

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]
    cors_origin_regex: str = r"http://localhost:\d+"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    llm_model: str = "claude-sonnet-4-20250514"
    rerank_llm_model: str = "claude-3-5-haiku-20241022"
    voyage_rerank_model: str = "rerank-2"
    voyage_api_url: str = "https://api.voyageai.com/v1/rerank"

    # Chunking
    chunk_size: int = 20  # target turns per heuristic chunk

    # Retrieval
    default_top_k: int = 5
    over_fetch_factor: int = 3
    min_score: float = 0.0
    expand_context_workers: int = 4

    # Cache
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 512

    # External calls
    request_timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_max_wait_seconds: float = 8.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
