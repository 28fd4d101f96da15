"""
NaviStream Configuration Management Module

This module provides configuration management for the NaviStream media backend
using Pydantic Settings. It loads and validates all environment variables required for:
- Application settings (name, environment, debug mode, logging)
- MongoDB connection and pooling for the video metadata store
- S3-compatible object storage for uploaded videos and their derivatives
- Local JWT authentication
- Upload admission limits, staging area and remote upload retry policy
- Derivative (transcode + thumbnail) generation parameters

All settings support environment variable overrides and .env file loading.
"""

import json
import tempfile

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_VIDEO_MIME_TYPES: list[str] = [
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
]


def _split_list(value: str) -> list[str]:
    """Read a list setting given either as a JSON array or comma-separated."""
    value = value.strip()
    if value.startswith("["):
        return [str(item).strip() for item in json.loads(value)]
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Configuration settings for the NaviStream backend.

    Configuration Categories:
    - Application: Core app settings like name, environment, debug mode
    - Auth: JWT signing secret and token lifetime
    - MongoDB: Database connection URI and connection pool settings
    - Storage: S3-compatible credentials, bucket and public URL base
    - Upload: Admission limits, staging directory, retry policy
    - Derivatives: Transcode width and thumbnail geometry

    Example usage:
        ```python
        from app.config import get_settings

        settings = get_settings()
        print(f"Max upload: {settings.max_upload_size_bytes} bytes")
        ```
    """

    # =========================================================================
    # Application Settings
    # =========================================================================

    app_name: str = Field(
        default="NaviStream",
        description="Application name displayed in API documentation and logs",
    )

    app_env: str = Field(
        default="development",
        description="Application environment (development, staging, production, testing)",
    )

    debug: bool = Field(default=True, description="Enable debug mode with verbose logging")

    log_level: str = Field(
        default="info", description="Logging level (debug, info, warning, error, critical)"
    )

    json_logs: bool = Field(
        default=False, description="Emit structured JSON log records instead of plain text"
    )

    host: str = Field(default="0.0.0.0", description="Host address for the API server to bind to")

    port: int = Field(default=3001, description="Port number for the API server", ge=1, le=65535)

    cors_origins: Annotated[list[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="List of allowed CORS origins for frontend access",
    )

    # =========================================================================
    # Auth Settings
    # =========================================================================

    secret_key: str = Field(
        default="development-secret-key-change-in-production-32chars",
        description="Secret key for JWT signing. Must be a secure random string.",
        min_length=32,
    )

    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    jwt_expiration_hours: int = Field(
        default=24, description="JWT token expiration time in hours", ge=1, le=168
    )

    # =========================================================================
    # MongoDB Configuration
    # =========================================================================

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI (e.g., mongodb://localhost:27017)",
    )

    mongodb_db_name: str = Field(default="navistream", description="MongoDB database name")

    mongodb_min_pool_size: int = Field(
        default=10, description="Minimum number of connections in MongoDB connection pool", ge=1
    )

    mongodb_max_pool_size: int = Field(
        default=100, description="Maximum number of connections in MongoDB connection pool", ge=10
    )

    # =========================================================================
    # S3-compatible Storage Configuration
    # =========================================================================

    s3_endpoint_url: str | None = Field(
        default=None, description="S3-compatible endpoint URL for MinIO (None for AWS S3)"
    )

    s3_access_key_id: str = Field(default="minioadmin", description="S3/MinIO access key ID")

    s3_secret_access_key: str = Field(
        default="minioadmin", description="S3/MinIO secret access key"
    )

    s3_bucket_name: str = Field(
        default="navistream-media", description="S3 bucket storing videos and derivatives"
    )

    s3_region: str = Field(default="us-east-1", description="AWS region for the S3 bucket")

    storage_public_base_url: str | None = Field(
        default=None,
        description="Public base URL objects are served from (CDN or bucket URL)",
    )

    remote_folder: str = Field(
        default="navistream/videos",
        description="Namespaced folder every uploaded video is stored under",
    )

    # =========================================================================
    # Upload Admission and Staging
    # =========================================================================

    max_upload_size_mb: int = Field(
        default=100,
        description="Maximum video upload size in mebibytes",
        ge=1,
        le=1024,
    )

    allowed_video_mime_types: Annotated[list[str], NoDecode] = Field(
        default=DEFAULT_VIDEO_MIME_TYPES,
        description="Whitelist of declared content types accepted for upload",
    )

    multipart_overhead_bytes: int = Field(
        default=1024 * 1024,
        description="Allowance for form fields and boundaries over the file ceiling",
        ge=0,
    )

    staging_dir: str = Field(
        default=str(Path(tempfile.gettempdir()) / "navistream-staging"),
        description="Directory holding staged uploads while they are processed",
    )

    staging_chunk_size_bytes: int = Field(
        default=1024 * 1024, description="Chunk size used when writing staged files", ge=1024
    )

    stale_staging_max_age_seconds: int = Field(
        default=3600,
        description="Staged files older than this are swept at startup",
        ge=60,
    )

    # =========================================================================
    # Remote Upload Retry Policy
    # =========================================================================

    remote_upload_max_attempts: int = Field(
        default=3,
        description="Total attempts for the remote upload when transport errors occur",
        ge=1,
        le=5,
    )

    remote_upload_retry_delay_seconds: float = Field(
        default=1.0,
        description="Fixed delay between remote upload attempts",
        ge=0.0,
        le=10.0,
    )

    # =========================================================================
    # Derivative Generation
    # =========================================================================

    enable_derivatives: bool = Field(
        default=True, description="Generate transcoded video and thumbnail after upload"
    )

    transcode_max_width: int = Field(
        default=1280, description="Maximum width of the transcoded playback video", ge=160
    )

    thumbnail_width: int = Field(default=400, description="Thumbnail width in pixels", ge=16)

    thumbnail_height: int = Field(default=225, description="Thumbnail height in pixels", ge=16)

    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable name or path")

    # =========================================================================
    # Model Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        normalized = v.lower()
        if normalized not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return normalized

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate that app_env is a valid environment name."""
        valid_envs = {"development", "staging", "production", "testing"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {', '.join(valid_envs)}")
        return normalized

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Validate that jwt_algorithm is a supported algorithm."""
        valid_algorithms = {"HS256", "HS384", "HS512"}
        if v.upper() not in valid_algorithms:
            raise ValueError(
                f"Invalid jwt_algorithm '{v}'. Must be one of: {', '.join(valid_algorithms)}"
            )
        return v.upper()

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string if provided as string."""
        if isinstance(v, str):
            return _split_list(v)
        return v

    @field_validator("allowed_video_mime_types", mode="before")
    @classmethod
    def validate_allowed_mime_types(cls, v: str | list[str]) -> list[str]:
        """Parse and normalize the MIME whitelist from a comma-separated string."""
        if isinstance(v, str):
            v = _split_list(v)
        return [mime.lower() for mime in v]

    @field_validator("remote_folder")
    @classmethod
    def validate_remote_folder(cls, v: str) -> str:
        """Strip leading and trailing slashes so keys never contain '//'."""
        folder = v.strip().strip("/")
        if not folder:
            raise ValueError("remote_folder must not be empty")
        return folder

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_upload_size_bytes(self) -> int:
        """Maximum upload size in bytes (100 MiB by default)."""
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def max_request_size_bytes(self) -> int:
        """Largest declared request body accepted before the form is read."""
        return self.max_upload_size_bytes + self.multipart_overhead_bytes

    @property
    def public_base_url(self) -> str:
        """
        Base URL public object URLs are built from.

        Uses storage_public_base_url when configured, otherwise the path-style
        URL of the bucket on the custom endpoint (MinIO), otherwise the AWS
        virtual-hosted bucket URL.
        """
        if self.storage_public_base_url:
            return self.storage_public_base_url.rstrip("/")
        if self.s3_endpoint_url:
            return f"{self.s3_endpoint_url.rstrip('/')}/{self.s3_bucket_name}"
        return f"https://{self.s3_bucket_name}.s3.{self.s3_region}.amazonaws.com"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    The lru_cache decorator ensures that the Settings object is created only
    once on first call; later calls return the cached instance without
    re-reading environment variables or .env files.

    Returns:
        Settings: The global configuration instance.
    """
    return Settings()
