"""
Configuration settings for the geoconvert application.
"""

from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Attributes:
        crs_endpoints: Ordered URL templates used to resolve EPSG codes;
            ``{code}`` is replaced with the numeric code
        http_timeout: Timeout in seconds for each CRS endpoint request
        preview_cache_max_entries: Upper bound on cached preview metadata
        bbox_samples_per_edge: Points sampled along each bbox edge
        worker_mode: Background execution context type
        worker_start_method: multiprocessing start method for process workers
        worker_shutdown_timeout: Seconds to wait for the worker to exit
        max_upload_size_mb: Maximum size of a single uploaded file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="GEOCONVERT_",
    )

    # CRS resolution
    crs_endpoints: tuple[str, ...] = (
        "https://spatialreference.org/ref/epsg/{code}/proj4.txt",
        "https://epsg.io/{code}.proj4",
    )
    http_timeout: float = 10.0

    # Preview
    preview_cache_max_entries: int = 256
    bbox_samples_per_edge: int = 9

    # Background worker
    worker_mode: Literal["process", "thread"] = "process"
    worker_start_method: Literal["spawn", "fork", "forkserver"] = "spawn"
    worker_shutdown_timeout: float = 5.0

    # Upload settings
    max_upload_size_mb: int = 200

    # API settings
    api_v1_prefix: str = "/api/v1"
    port: int = 8000

    # CORS settings
    cors_origins: str = "http://localhost:5173,http://localhost:3000,http://localhost:4173"

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Optional[str] = None
    json_logs: bool = False

    @field_validator("crs_endpoints")
    @classmethod
    def _endpoints_take_code(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        missing = [template for template in value if "{code}" not in template]
        if missing:
            raise ValueError(f"CRS endpoint templates must contain '{{code}}': {missing}")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Comma-separated ``cors_origins`` as a list, blanks dropped."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb << 20


settings = Settings()
