"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a local .env file).
Collaborators never read this module directly; the ``get_*`` factories pass
explicit values into their constructors at startup.
"""

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ============================================
    # Application
    # ============================================
    app_name: str = "EduSense"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ============================================
    # Database (PostgreSQL)
    # ============================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "edusense"

    # Explicit DATABASE_URL takes precedence if set
    database_url: str | None = None

    @property
    def get_database_url(self) -> str:
        """Get database URL - explicit or constructed from components."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # ============================================
    # Redis
    # ============================================
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_auth: str = ""

    @property
    def redis_url(self) -> str:
        """Construct Redis URL, with auth when configured."""
        if self.redis_auth:
            return f"redis://:{self.redis_auth}@{self.redis_host}:{self.redis_port}/0"
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    # ============================================
    # Qdrant (Vector Database)
    # ============================================
    qdrant_url: str = "http://localhost:6333"
    qdrant_collection: str = "academic_chunks"
    qdrant_api_key: str | None = None
    qdrant_timeout: int = 60

    # ============================================
    # Retrieval
    # ============================================
    retrieval_top_k: int = 5
    retrieval_min_score: float = 0.5
    chunk_size_tokens: int = 400
    chunk_overlap_tokens: int = 50
    chars_per_token: int = 4

    # ============================================
    # Generation
    # ============================================
    # Ordered fallback chain, "provider:model". Providers: openai, azure, anthropic
    generation_models: list[str] = [
        "openai:llama-3.3-70b-versatile",
        "openai:llama-3.1-8b-instant",
    ]
    generation_temperature: float = 0.4
    generation_max_tokens: int = 2048
    generation_timeout: float = 60.0

    # OpenAI-compatible endpoint (OpenAI, Groq, local gateways)
    openai_api_key: str = ""
    openai_base_url: str | None = "https://api.groq.com/openai/v1"

    # Azure OpenAI
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_api_version: str = "2025-04-01-preview"

    # Anthropic
    anthropic_api_key: str = ""

    @field_validator("generation_models", mode="before")
    @classmethod
    def parse_generation_models(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(v, str) and not v.strip().startswith("["):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    # ============================================
    # Embeddings
    # ============================================
    embedding_api_key: str = ""
    embedding_base_url: str | None = None
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model name"
    )
    embedding_dimensions: int = Field(
        default=1536, description="Embedding vector dimensions (must match collection)"
    )

    # ============================================
    # Media Storage (S3-compatible)
    # ============================================
    storage_endpoint_url: str = "http://localhost:9000"
    storage_region: str = "us-east-1"
    storage_bucket: str = "edusense"
    storage_access_key: str = ""
    storage_secret_key: str = ""
    storage_public_base_url: str = ""  # Defaults to endpoint/bucket
    storage_root_folder: str = "edusense"

    # ============================================
    # OCR / Rasterization
    # ============================================
    tesseract_cmd: str | None = None
    ocr_language: str = "eng"
    pdf_dpi: int = 200
    max_upload_bytes: int = 20 * 1024 * 1024
    concept_extraction: str = "llm"  # "llm" or "keyword"
    index_frame_text: bool = True

    # ============================================
    # Authentication
    # ============================================
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    auth_cookie_name: str = "auth_token"

    # ============================================
    # Rate Limiting
    # ============================================
    rate_limit_enabled: bool = True
    rate_limit_rpm: int = 20  # Questions per minute per user

    # ============================================
    # Langfuse (v3 Observability)
    # ============================================
    langfuse_host: str = "http://localhost:3000"
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""

    # ============================================
    # Logging
    # ============================================
    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"

    # ============================================
    # Development Security (DANGER ZONE)
    # ============================================
    # Both conditions must be true for dev bypass to work:
    # 1. environment == "development"
    # 2. dev_bypass_enabled == True (explicit opt-in)
    dev_bypass_enabled: bool = Field(
        default=False,
        description="Explicitly enable X-Dev-Bypass header. Requires environment=development.",
    )

    @property
    def chunk_size_chars(self) -> int:
        return self.chunk_size_tokens * self.chars_per_token

    @property
    def chunk_overlap_chars(self) -> int:
        return self.chunk_overlap_tokens * self.chars_per_token


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
