"""
Configuration Management using Pydantic Settings
Loads configuration from environment variables with validation
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Knowledge Vault", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment: development, staging, production")
    api_v1_prefix: str = Field(default="/api/v1", description="API version 1 prefix")

    # Storage backend
    storage_backend: str = Field(default="supabase", description="Blob storage backend: supabase or memory")
    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_key: Optional[str] = Field(default=None, description="Supabase service role key")
    supabase_storage_bucket: str = Field(default="knowledge-base-files", description="Primary bucket for knowledge base blobs")

    # Persistence backend
    persistence_backend: str = Field(default="postgres", description="Record store backend: postgres or memory")
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_user: str = Field(default="knowledge", description="PostgreSQL user")
    postgres_password: str = Field(default="knowledge_secret", description="PostgreSQL password")
    postgres_db: str = Field(default="knowledge_vault", description="PostgreSQL database name")
    database_url: Optional[str] = Field(default=None, description="Full database URL (cloud)")

    @property
    def postgres_url_sync(self) -> str:
        """
        Construct synchronous PostgreSQL connection URL.
        Prioritizes DATABASE_URL (cloud) over individual settings (local).
        """
        if self.database_url:
            url = self.database_url
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            url = url.replace("postgresql+asyncpg://", "postgresql://")
            # psycopg2 expects sslmode, not ssl
            if "ssl=require" in url:
                url = url.replace("ssl=require", "sslmode=require")
            return url

        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # LLM Settings - Google Gemini
    google_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    google_model: str = Field(default="gemini-2.5-flash", description="Google Gemini model")
    ai_max_input_chars: int = Field(default=12000, description="Max characters of extracted text sent to the LLM")
    image_ocr_enabled: bool = Field(default=True, description="Run vision OCR on uploaded images when an API key is set")

    # Compression pipeline
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, description="Largest accepted upload in bytes")
    compression_level: int = Field(default=9, ge=1, le=9, description="gzip compression level")
    preservation_ratio_threshold: float = Field(default=70.0, description="Keep the original when the compression ratio exceeds this percentage")
    critical_mime_types: list[str] = Field(
        default=["application/pdf", "image/png"],
        description="MIME types whose original is always kept"
    )
    strict_decompression: bool = Field(default=False, description="Raise on unknown compression type tags instead of returning bytes unchanged")

    # Enrichment
    enrichment_min_text_length: int = Field(default=10, description="Minimum extracted text length for AI enrichment")
    enrichment_workers: int = Field(default=4, ge=1, description="Number of enrichment workers")
    enrichment_queue_size: int = Field(default=100, ge=1, description="Capacity of the enrichment queue")
    enrichment_subtask_timeout: float = Field(default=120.0, gt=0, description="Seconds before an AI sub-task is abandoned")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        allowed = ["supabase", "memory"]
        if v.lower() not in allowed:
            raise ValueError(f"storage_backend must be one of {allowed}")
        return v.lower()

    @field_validator("persistence_backend")
    @classmethod
    def validate_persistence_backend(cls, v: str) -> str:
        allowed = ["postgres", "memory"]
        if v.lower() not in allowed:
            raise ValueError(f"persistence_backend must be one of {allowed}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Export settings instance for convenience
settings = get_settings()
