"""Tests for configuration management."""

import os
import pytest
from unittest.mock import patch

from partition_backup.base import DataLossMode, RestorePolicy
from partition_backup.config import (
    BackupRestoreConfig,
    RestoreConfig,
    StoreConfig,
    validate_config,
)


class TestStoreConfig:
    """Test store configuration."""

    def test_defaults(self):
        """Test default values."""
        config = StoreConfig()
        assert config.backend == "file"
        assert config.file_root == "./backups"
        assert config.blob_bucket == "partitionbackups"
        assert config.blob_endpoint_url is None
        assert config.retry_base_delay == 1.0
        assert config.max_retries == 10
        assert config.list_page_size == 1000

    def test_from_env(self):
        """Test creating from environment variables."""
        with patch.dict(os.environ, {
            "BACKUP_STORE_BACKEND": "blob",
            "BACKUP_BLOB_BUCKET": "cluster-backups",
            "BACKUP_BLOB_ENDPOINT_URL": "http://minio:9000",
            "AWS_REGION": "eu-central-1",
            "BACKUP_RETRY_BASE_DELAY": "0.25",
            "BACKUP_MAX_RETRIES": "5",
            "BACKUP_LIST_PAGE_SIZE": "200"
        }):
            config = StoreConfig.from_env()
            assert config.backend == "blob"
            assert config.blob_bucket == "cluster-backups"
            assert config.blob_endpoint_url == "http://minio:9000"
            assert config.blob_region == "eu-central-1"
            assert config.retry_base_delay == 0.25
            assert config.max_retries == 5
            assert config.list_page_size == 200

    def test_validation(self):
        """Test validation errors."""
        with pytest.raises(ValueError, match="Unknown store backend"):
            StoreConfig(backend="azure")

        with pytest.raises(ValueError, match="file_root must not be empty"):
            StoreConfig(backend="file", file_root="  ")

        with pytest.raises(ValueError, match="blob_bucket must not be empty"):
            StoreConfig(backend="blob", blob_bucket="")

        with pytest.raises(ValueError, match="retry_base_delay must be non-negative"):
            StoreConfig(retry_base_delay=-1)

        with pytest.raises(ValueError, match="max_retries must be non-negative"):
            StoreConfig(max_retries=-1)

        with pytest.raises(ValueError, match="list_page_size must be between 1 and 1000"):
            StoreConfig(list_page_size=5000)

    def test_frozen(self):
        config = StoreConfig()
        with pytest.raises(Exception):
            config.backend = "blob"


class TestRestoreConfig:
    """Test restore configuration."""

    def test_defaults(self):
        config = RestoreConfig()
        assert config.work_directory.endswith("partition-backup")
        assert config.data_loss_mode == DataLossMode.FULL
        assert config.restore_policy == RestorePolicy.FORCE

    def test_from_env(self):
        with patch.dict(os.environ, {
            "BACKUP_WORK_DIR": "/var/scratch",
            "BACKUP_DATA_LOSS_MODE": "PartialDataLoss",
            "BACKUP_RESTORE_POLICY": "Safe"
        }):
            config = RestoreConfig.from_env()
            assert config.work_directory == "/var/scratch"
            assert config.data_loss_mode == DataLossMode.PARTIAL
            assert config.restore_policy == RestorePolicy.SAFE

    def test_invalid_enum_from_env(self):
        with patch.dict(os.environ, {"BACKUP_DATA_LOSS_MODE": "Everything"}):
            with pytest.raises(ValueError):
                RestoreConfig.from_env()

    def test_validation(self):
        with pytest.raises(ValueError, match="work_directory must not be empty"):
            RestoreConfig(work_directory="")


class TestBackupRestoreConfig:
    """Test main configuration."""

    def test_from_env(self):
        with patch.dict(os.environ, {
            "BACKUP_STORE_BACKEND": "file",
            "BACKUP_FILE_ROOT": "/mnt/share/backups",
            "BACKUP_WORK_DIR": "/var/scratch"
        }):
            config = BackupRestoreConfig.from_env()
            assert config.store.file_root == "/mnt/share/backups"
            assert config.restore.work_directory == "/var/scratch"

    def test_to_dict_file(self):
        config = BackupRestoreConfig(
            store=StoreConfig(file_root="/mnt/share"),
            restore=RestoreConfig(work_directory="/var/scratch"),
        )
        assert config.to_dict() == {
            "store_backend": "file",
            "work_directory": "/var/scratch",
            "data_loss_mode": "FullDataLoss",
            "restore_policy": "Force",
            "file_root": "/mnt/share",
        }

    def test_to_dict_blob(self):
        config = BackupRestoreConfig(store=StoreConfig(backend="blob", blob_bucket="b"))
        config_dict = config.to_dict()
        assert config_dict["blob_bucket"] == "b"
        assert config_dict["max_retries"] == 10
        assert "file_root" not in config_dict


class TestValidateConfig:
    """Test configuration warnings."""

    def test_default_config_is_clean(self):
        assert validate_config(BackupRestoreConfig()) == []

    def test_store_inside_work_directory(self, tmp_path):
        config = BackupRestoreConfig(
            store=StoreConfig(file_root=str(tmp_path / "scratch" / "store")),
            restore=RestoreConfig(work_directory=str(tmp_path / "scratch")),
        )
        warnings = validate_config(config)
        assert len(warnings) == 1
        assert "inside work_directory" in warnings[0]

    def test_retry_warnings(self):
        no_retry = BackupRestoreConfig(store=StoreConfig(backend="blob", max_retries=0))
        assert any("will not be retried" in w for w in validate_config(no_retry))

        many = BackupRestoreConfig(store=StoreConfig(backend="blob", max_retries=50))
        assert any("Very high max_retries" in w for w in validate_config(many))

    def test_partial_data_loss_warning(self):
        config = BackupRestoreConfig(restore=RestoreConfig(data_loss_mode=DataLossMode.PARTIAL))
        assert any("Partial data loss" in w for w in validate_config(config))
