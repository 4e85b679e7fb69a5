"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources (in priority order):

  1. **Environment variables** -- e.g. ``OPENAI_API_KEY=sk-abc123``
  2. **.env file** -- key=value lines in the project root ``.env`` file

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults apply
when neither source sets a field.  ``config/config.yaml`` values are layered
underneath by :func:`avatar_knowledge.config.loader.load_settings`.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Avatar knowledge pipeline settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding Providers ===
    # "auto" picks OpenAI when a key is configured, else Nomic via Ollama.
    embedding_provider: str = "auto"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, Azure proxy, ...)
    openai_embedding_model: str = ""  # Empty = text-embedding-3-small
    ollama_base_url: str = "http://localhost:11434"
    embedding_batch_size: int = Field(default=100, ge=1)

    # === Chunking (characters, ~4 chars per token) ===
    chunk_target_size: int = Field(default=2000, gt=0)
    chunk_overlap_size: int = Field(default=200, ge=0)

    # === Ingestion ===
    max_upload_bytes: int = Field(default=10 * MIB, gt=0)
    ingest_workers: int = Field(default=2, ge=1)
    # 1 = no retry.  Retries are applied around the whole embed() call.
    ingest_embedding_max_attempts: int = Field(default=1, ge=1)
    ingest_retry_backoff_seconds: float = Field(default=2.0, ge=0.0)

    # === Retrieval ===
    retrieval_default_top_k: int = Field(default=5, ge=1)
    # Scores at or below this are dropped; -1.0 disables the filter.
    retrieval_min_similarity: float = Field(default=-1.0, ge=-1.0, le=1.0)
    query_cache_size: int = Field(default=512, ge=1)
    query_cache_ttl_seconds: int = Field(default=3600, ge=1)

    # === Persistence ===
    knowledge_db_path: str = "data/knowledge.db"
    # Finished jobs older than this are pruned at startup.
    job_retention_hours: float = Field(default=24.0, gt=0)
    # Unfinished jobs not renewed for this long are failed as interrupted.
    # Owners renew every quarter lease, so keep it well above one embedding call.
    job_lease_seconds: float = Field(default=120.0, ge=0)

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have the settings they need."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("nomic")
        return providers
