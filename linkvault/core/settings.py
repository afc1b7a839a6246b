from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    log_level: str
    embeddings_provider: str
    embedding_model: str | None
    embedding_timeout: float
    store_timeout: float
    metadata_timeout: float
    extractor_timeout: float
    search_default_limit: int
    search_max_limit: int
    query_max_length: int
    query_cache_max_age_days: int
    max_embed_chars: int

    @staticmethod
    def from_env() -> "Settings":
        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "./_local/data/linkvault.db").strip(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            embeddings_provider=os.getenv("EMBEDDINGS_PROVIDER", "openai").strip(),
            embedding_model=os.getenv("EMBEDDING_MODEL", "").strip() or None,
            embedding_timeout=_f("EMBEDDING_TIMEOUT", "10"),
            store_timeout=_f("STORE_TIMEOUT", "8"),
            metadata_timeout=_f("METADATA_TIMEOUT", "8"),
            extractor_timeout=_f("EXTRACTOR_TIMEOUT", "10"),
            search_default_limit=_i("SEARCH_DEFAULT_LIMIT", "50"),
            search_max_limit=_i("SEARCH_MAX_LIMIT", "100"),
            query_max_length=_i("QUERY_MAX_LENGTH", "500"),
            query_cache_max_age_days=_i("QUERY_CACHE_MAX_AGE_DAYS", "0"),
            max_embed_chars=_i("MAX_EMBED_CHARS", "20000"),
        )
