"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.

The processing core never reads settings directly: the orchestrator and the
API layer translate them into ValidationOptions / ChunkingOptions so every
component stays testable with explicit arguments.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # File validation
    # ------------------------------------------------------------------
    max_file_size:          int  = 100 * 1024 * 1024   # 100 MB
    strict_mime_type_check: bool = True
    allow_executables:      bool = False   # never enable outside isolated test rigs

    # ------------------------------------------------------------------
    # Chunking
    # ------------------------------------------------------------------
    max_tokens:     int = Field(1500, gt=0)
    overlap_tokens: int = Field(150, ge=0)
    min_chunk_size: int = Field(100, ge=0)

    # ------------------------------------------------------------------
    # Blob storage
    # ------------------------------------------------------------------
    blob_store_backend: str = "memory"   # "s3" | "memory"

    aws_region: str = "us-east-1"
    s3_bucket:  str = "document-uploads"
    s3_prefix:  str = "documents"
    s3_endpoint_url: str = ""            # LocalStack / MinIO; empty = AWS
    s3_public_base_url: str = ""         # CDN or bucket website root, optional

    # ------------------------------------------------------------------
    # Progress tracking
    # ------------------------------------------------------------------
    progress_store_max_entries: int = 500

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False
    cors_origins: list[str] = Field(default_factory=list)   # JSON list in env; ignored in development

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def validation_options(self):
        from docpipeline.processing.validation import ValidationOptions

        return ValidationOptions(
            max_file_size=self.max_file_size,
            strict_mime_type_check=self.strict_mime_type_check,
            allow_executables=self.allow_executables,
        )

    def chunking_options(self):
        from docpipeline.processing.chunking import ChunkingOptions

        return ChunkingOptions(
            max_tokens=self.max_tokens,
            overlap_tokens=self.overlap_tokens,
            min_chunk_size=self.min_chunk_size,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
