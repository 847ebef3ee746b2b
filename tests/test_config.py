"""
Tests for configuration module.
"""

import pytest

from geoconvert.core.config import Settings


class TestSettings:
    """Tests for Settings class."""

    def test_default_values(self) -> None:
        """Test that default values are set correctly."""
        settings = Settings()
        assert settings.crs_endpoints == (
            "https://spatialreference.org/ref/epsg/{code}/proj4.txt",
            "https://epsg.io/{code}.proj4",
        )
        assert settings.preview_cache_max_entries == 256
        assert settings.worker_mode == "process"
        assert settings.api_v1_prefix == "/api/v1"

    def test_max_upload_size_bytes(self) -> None:
        """Test max_upload_size_bytes property."""
        settings = Settings(max_upload_size_mb=10)
        assert settings.max_upload_size_bytes == 10 * 1024 * 1024

    def test_cors_origins_list(self) -> None:
        settings = Settings(cors_origins="http://a.test, http://b.test")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings are read from GEOCONVERT_ environment variables."""
        monkeypatch.setenv("GEOCONVERT_WORKER_MODE", "thread")
        monkeypatch.setenv("GEOCONVERT_HTTP_TIMEOUT", "2.5")

        settings = Settings()
        assert settings.worker_mode == "thread"
        assert settings.http_timeout == 2.5

    def test_invalid_worker_mode(self) -> None:
        with pytest.raises(ValueError):
            Settings(worker_mode="cluster")

    def test_endpoint_without_code_placeholder(self) -> None:
        with pytest.raises(ValueError):
            Settings(crs_endpoints=("https://epsg.io/proj4",))
