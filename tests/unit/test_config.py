"""
Unit tests for environment-driven configuration.
"""

import pytest

from dbaas.tabledb_server.config import (
    BlobBackend,
    BlobStoreConfig,
    CascadeMode,
    IntegrityConfig,
    ServerConfig,
)


class TestServerConfig:
    """Tests for ServerConfig.from_env and validate."""

    def test_defaults(self, monkeypatch):
        for name in ["BLOB_BACKEND", "CASCADE_MODE", "S3_BUCKET", "MAX_BATCH_ROWS"]:
            monkeypatch.delenv(name, raising=False)
        config = ServerConfig.from_env()
        assert config.blob.backend is BlobBackend.S3
        assert config.s3.bucket == "tabledb-storage"
        assert config.integrity.cascade_mode is CascadeMode.FLAT
        assert config.integrity.max_batch_rows == 200

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BLOB_BACKEND", "memory")
        monkeypatch.setenv("CASCADE_MODE", "Recursive")
        monkeypatch.setenv("INTEGRITY_MAX_CONCURRENT", "3")
        monkeypatch.setenv("BLOB_READ_RETRIES", "0")
        monkeypatch.setenv("S3_ENDPOINT", "http://localhost:9000")
        config = ServerConfig.from_env()
        assert config.blob.backend is BlobBackend.MEMORY
        assert config.blob.read_retries == 0
        assert config.integrity.cascade_mode is CascadeMode.RECURSIVE
        assert config.integrity.max_concurrent == 3
        assert config.s3.endpoint_url == "http://localhost:9000"

    @pytest.mark.parametrize(
        "name,value",
        [("BLOB_BACKEND", "gcs"), ("CASCADE_MODE", "deep")],
    )
    def test_invalid_enum(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            ServerConfig.from_env()

    @pytest.mark.parametrize(
        "config",
        [
            ServerConfig(blob=BlobStoreConfig(timeout_seconds=0)),
            ServerConfig(blob=BlobStoreConfig(read_retries=-1)),
            ServerConfig(integrity=IntegrityConfig(max_concurrent=0)),
            ServerConfig(integrity=IntegrityConfig(max_batch_rows=0)),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_log_config_does_not_leak_secrets(self, caplog, monkeypatch):
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "super-secret")
        monkeypatch.delenv("BLOB_BACKEND", raising=False)
        monkeypatch.delenv("CASCADE_MODE", raising=False)
        config = ServerConfig.from_env()
        with caplog.at_level("INFO"):
            config.log_config()
        assert "super-secret" not in caplog.text
        assert all("super-secret" not in str(r.__dict__) for r in caplog.records)
