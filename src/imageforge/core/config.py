"""Configuration management for the imageforge service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEFORGE_ prefix,
allowing deployments to be tuned without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEFORGE_* prefix)
2. .env file in the project root
3. Default values defined in ImageforgeConfig

Example .env file:
    IMAGEFORGE_ENVIRONMENT=production
    IMAGEFORGE_RATE_LIMIT=10
    IMAGEFORGE_RATE_LIMIT_WINDOW_MS=60000
    IMAGEFORGE_GCS_PRODUCTION_BUCKET_NAME=my-public-images
    GOOGLE_APPLICATION_CREDENTIALS=/secrets/service-account.json

The credentials file is the one setting that is also read without the prefix,
because ``GOOGLE_APPLICATION_CREDENTIALS`` is the name the Google client
libraries and deployment tooling already use.

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI lifespan reads it exactly once to build the rate governor and the
artifact store; everything downstream receives those objects, never the
environment.

Bucket Selection
----------------
The remote tier writes to one of two buckets depending on ``environment``:

- ``production``: ``gcs_production_bucket_name``
- anything else: ``gcs_bucket_name``

See Also
--------
- ImageforgeConfig: Full configuration class documentation
- imageforge.core.remote_tier.resolve_credential_source: credential lookup order
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from imageforge.core.remote_tier import CredentialSource, resolve_credential_source


class ImageforgeConfig(BaseSettings):
    """Main configuration for the imageforge service.

    Values are loaded from environment variables with the IMAGEFORGE_ prefix,
    with fallback to defaults defined here.

    All directory fields are created on initialisation if they don't exist.

    Attributes
    ----------
    Deployment:
        environment : Literal["development", "production"]
            Deployment mode; selects the bucket and credential source.

    Rate Limiting:
        rate_limit : int
            Maximum admitted requests per client per window.
        rate_limit_window_ms : int
            Fixed window length in milliseconds.
        rate_limit_sweep_interval_ms : int
            How often expired windows are swept from memory.

    Remote Tier (Google Cloud Storage):
        remote_enabled : bool
            Upload artifacts to the bucket (local tier is always written).
        gcs_bucket_name : str
            Bucket used outside production.
        gcs_production_bucket_name : str
            Bucket used in production.
        gcs_project : str | None
            Optional GCP project for the storage client.
        google_application_credentials : Path | None
            Service account key file for explicit credentials.
        remote_timeout_seconds : float
            Upper bound for each upload or delete call.

    Paths:
        data_dir : Path
            Root directory for persisted data.
        images_dir : Path
            Local tier: one binary per artifact filename.
        metadata_dir : Path
            Metadata index: one ``<id>.json`` per artifact.
        local_url_prefix : str
            URL prefix written into local tier URLs; change it when a proxy
            or CDN serves the local tier somewhere other than /files.

    Retention:
        retention_count : int
            Default number of newest artifacts kept by cleanup.

    Server:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1024-65535).

    Examples
    --------
        >>> custom_config = ImageforgeConfig(
        ...     environment="production",
        ...     rate_limit=5,
        ...     remote_enabled=False,
        ... )
        >>> custom_config.bucket_name
        'imageforge-images'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEFORGE_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Deployment
    environment: Literal["development", "production"] = Field(
        default="development",
        description="Deployment mode (production selects the production bucket)",
    )

    # Rate limiting
    rate_limit: int = Field(
        default=10,
        description="Maximum admitted requests per client per window",
        ge=1,
    )
    rate_limit_window_ms: int = Field(
        default=60_000,
        description="Rate limit window length in milliseconds",
        ge=1,
    )
    rate_limit_sweep_interval_ms: int = Field(
        default=3_600_000,
        description="Interval between sweeps of expired rate limit windows",
        ge=1,
    )

    # Remote tier
    remote_enabled: bool = Field(
        default=True,
        description="Upload artifacts to Google Cloud Storage",
    )
    gcs_bucket_name: str = Field(
        default="imageforge-dev-images",
        description="Bucket used outside production",
    )
    gcs_production_bucket_name: str = Field(
        default="imageforge-images",
        description="Bucket used in production",
    )
    gcs_project: str | None = Field(
        default=None,
        description="GCP project for the storage client (None = inferred)",
    )
    google_application_credentials: Path | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "IMAGEFORGE_GOOGLE_APPLICATION_CREDENTIALS",
            "GOOGLE_APPLICATION_CREDENTIALS",
            "google_application_credentials",
        ),
        description="Service account key file for explicit credentials",
    )
    remote_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for each remote upload or delete",
        gt=0,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory for persisted data",
    )
    images_dir: Path = Field(
        default=Path("data/images"),
        description="Local tier directory for artifact binaries",
    )
    metadata_dir: Path = Field(
        default=Path("data/metadata"),
        description="Directory holding one JSON record per artifact",
    )
    local_url_prefix: str = Field(
        default="/files",
        description="URL prefix written into local tier URLs (the service itself serves /files)",
    )

    # Retention
    retention_count: int = Field(
        default=100,
        description="Default number of newest artifacts kept by cleanup",
        ge=0,
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    @property
    def bucket_name(self) -> str:
        """Bucket the remote tier writes to for the current environment."""
        if self.environment == "production":
            return self.gcs_production_bucket_name
        return self.gcs_bucket_name

    @property
    def credential_source(self) -> CredentialSource:
        """Credential source for the storage client, resolved once from settings."""
        return resolve_credential_source(
            self.environment,
            self.google_application_credentials,
        )


# Global configuration instance
# Loaded from IMAGEFORGE_* environment variables and .env on import.
config = ImageforgeConfig()
