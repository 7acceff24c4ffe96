"""
Configuration management using pydantic-settings.
Loads settings from environment variables and .env file.
"""
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Smallest part size accepted by S3-compatible stores (except for the last part)
MIN_MULTIPART_PART_SIZE = 5 * 1024 * 1024

# S3 SigV4 presigned URLs cannot outlive seven days
MAX_PRESIGNED_EXPIRATION = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Application Settings
    app_name: str = Field(default="Upload Gateway", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Deployment environment name")
    server_host: str = Field(default="0.0.0.0", description="Server bind host")
    server_port: int = Field(default=8000, description="Server bind port")
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL used to build permanent file URLs"
    )
    cors_origins: str = Field(default="http://localhost:5173", description="Comma-separated CORS origins")
    api_version: str = Field(default="v1", description="API version")

    # Logging Settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json or text)")

    # S3-compatible Object Storage Settings
    storage_endpoint: str = Field(default="127.0.0.1", description="Store host, or full endpoint URL when no port is set")
    storage_port: Optional[int] = Field(default=9000, description="Store port (unset for R2/AWS style endpoints)")
    storage_use_ssl: bool = Field(default=False, description="Use TLS for store connections")
    storage_access_key: str = Field(default="minioadmin", description="Store access key")
    storage_secret_key: str = Field(default="minioadmin", description="Store secret key")
    storage_bucket: str = Field(default="uploads", description="Bucket holding every upload category")
    storage_region: str = Field(default="us-east-1", description="Store region (R2 uses 'auto')")
    storage_connection_timeout: int = Field(default=10, description="Store connect timeout in seconds")
    storage_read_timeout: int = Field(default=60, description="Store read timeout in seconds")

    # Transfer Settings
    direct_upload_threshold_bytes: int = Field(
        default=5 * 1024 * 1024,
        description="Declared sizes above this prefer a presigned direct upload"
    )
    multipart_part_size_bytes: int = Field(default=MIN_MULTIPART_PART_SIZE, description="Multipart part size in bytes")
    multipart_max_concurrency: int = Field(default=4, description="Parts uploaded concurrently per transfer")
    transfer_timeout_minutes: float = Field(default=10.0, description="Overall server-streamed transfer timeout")
    part_timeout_seconds: float = Field(default=120.0, description="Timeout for a single part upload")
    presigned_url_expiration: int = Field(default=3600, description="Default presigned PUT lifetime in seconds")
    read_url_expiration: int = Field(default=3600, description="Lifetime of presigned read URLs in seconds")
    max_files_per_batch: int = Field(default=10, description="Maximum files accepted by a multiple-file upload")
    max_presigned_batch: int = Field(default=15, description="Maximum tickets issued by one batch request")

    # Rate Limit Settings
    rate_limit_single_upload: int = Field(default=5, description="Single uploads per window per client")
    rate_limit_batch_upload: int = Field(default=3, description="Multiple-file uploads per window per client")
    rate_limit_presigned: int = Field(default=10, description="Presigned ticket requests per window per client")
    rate_limit_batch_confirm: int = Field(default=15, description="Batch confirmations per window per client")
    rate_limit_window_ms: int = Field(default=60000, description="Rate limit window in milliseconds (whole seconds)")

    # Staging & Retention Settings
    temp_upload_dir: Optional[str] = Field(default=None, description="Staging directory (defaults to system temp)")
    staging_chunk_size: int = Field(default=1048576, description="Copy chunk size when staging request bodies")
    retention_days: int = Field(default=30, description="Default age for the purge command")

    @field_validator("multipart_part_size_bytes")
    @classmethod
    def validate_part_size(cls, v: int) -> int:
        """Validate part size respects the store minimum."""
        if v < MIN_MULTIPART_PART_SIZE:
            raise ValueError("MULTIPART_PART_SIZE_BYTES must be at least 5 MiB")
        return v

    @field_validator("multipart_max_concurrency", "max_files_per_batch", "max_presigned_batch")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator(
        "rate_limit_single_upload",
        "rate_limit_batch_upload",
        "rate_limit_presigned",
        "rate_limit_batch_confirm",
        "rate_limit_window_ms",
    )
    @classmethod
    def validate_rate_limits(cls, v: int) -> int:
        """Validate rate limits are positive."""
        if v <= 0:
            raise ValueError("rate limits must be positive")
        return v

    @field_validator("rate_limit_window_ms")
    @classmethod
    def validate_rate_limit_window(cls, v: int) -> int:
        """Windows are counted in whole seconds."""
        if v % 1000:
            raise ValueError("RATE_LIMIT_WINDOW_MS must be a multiple of 1000")
        return v

    @field_validator("presigned_url_expiration", "read_url_expiration")
    @classmethod
    def validate_expiration(cls, v: int) -> int:
        """Validate presigned lifetimes are within the SigV4 bounds."""
        if not 1 <= v <= MAX_PRESIGNED_EXPIRATION:
            raise ValueError(f"expiration must be between 1 and {MAX_PRESIGNED_EXPIRATION} seconds")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def api_prefix(self) -> str:
        """Get API prefix path."""
        return f"/api/{self.api_version}"

    @property
    def is_production(self) -> bool:
        """Whether internal error details must be hidden from clients."""
        return self.environment.lower() in ("prod", "production")

    @property
    def storage_endpoint_url(self) -> str:
        """
        Build the store endpoint URL.

        A configured port means a self-hosted MinIO style endpoint; without a
        port the endpoint value is already a full URL (Cloudflare R2, AWS).
        """
        if self.storage_port:
            scheme = "https" if self.storage_use_ssl else "http"
            return f"{scheme}://{self.storage_endpoint}:{self.storage_port}"
        return self.storage_endpoint

    @property
    def storage_force_path_style(self) -> bool:
        """Path-style addressing is required by MinIO, not by R2/AWS."""
        return bool(self.storage_port)


# Singleton settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get the singleton settings instance.

    This function provides a consistent way to access settings
    and is useful for dependency injection in FastAPI.

    Returns:
        Settings instance loaded from environment
    """
    return settings
