"""Configuration management for partition-backup."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import tempfile

from .base import DataLossMode, RestorePolicy


@dataclass(frozen=True)
class StoreConfig:
    """Central backup store configuration."""
    backend: str = "file"  # file, blob
    file_root: str = "./backups"

    # Blob (S3-compatible) settings
    blob_bucket: str = "partitionbackups"
    blob_endpoint_url: Optional[str] = None
    blob_region: Optional[str] = None

    # Retry policy beneath every blob call
    retry_base_delay: float = 1.0
    max_retries: int = 10
    list_page_size: int = 1000

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("BACKUP_STORE_BACKEND", "file"),
            file_root=os.getenv("BACKUP_FILE_ROOT", "./backups"),
            blob_bucket=os.getenv("BACKUP_BLOB_BUCKET", "partitionbackups"),
            blob_endpoint_url=os.getenv("BACKUP_BLOB_ENDPOINT_URL", None),
            blob_region=os.getenv("AWS_REGION", None),
            retry_base_delay=float(os.getenv("BACKUP_RETRY_BASE_DELAY", "1.0")),
            max_retries=int(os.getenv("BACKUP_MAX_RETRIES", "10")),
            list_page_size=int(os.getenv("BACKUP_LIST_PAGE_SIZE", "1000"))
        )

    def __post_init__(self):
        """Validate configuration."""
        valid_backends = {"file", "blob"}
        if self.backend not in valid_backends:
            raise ValueError(f"Unknown store backend: {self.backend}. Available: {valid_backends}")
        if self.backend == "file" and not self.file_root.strip():
            raise ValueError("file_root must not be empty for the file backend")
        if self.backend == "blob" and not self.blob_bucket.strip():
            raise ValueError("blob_bucket must not be empty for the blob backend")
        if self.retry_base_delay < 0:
            raise ValueError(f"retry_base_delay must be non-negative, got {self.retry_base_delay}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if not 1 <= self.list_page_size <= 1000:
            raise ValueError(f"list_page_size must be between 1 and 1000, got {self.list_page_size}")


@dataclass(frozen=True)
class RestoreConfig:
    """Restore orchestration configuration."""
    work_directory: str = field(default_factory=lambda: str(Path(tempfile.gettempdir()) / "partition-backup"))
    data_loss_mode: DataLossMode = DataLossMode.FULL
    restore_policy: RestorePolicy = RestorePolicy.FORCE

    @classmethod
    def from_env(cls) -> 'RestoreConfig':
        """Create config from environment variables."""
        return cls(
            work_directory=os.getenv(
                "BACKUP_WORK_DIR", str(Path(tempfile.gettempdir()) / "partition-backup")
            ),
            data_loss_mode=DataLossMode(os.getenv("BACKUP_DATA_LOSS_MODE", DataLossMode.FULL.value)),
            restore_policy=RestorePolicy(os.getenv("BACKUP_RESTORE_POLICY", RestorePolicy.FORCE.value))
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.work_directory.strip():
            raise ValueError("work_directory must not be empty")


@dataclass(frozen=True)
class BackupRestoreConfig:
    """Main configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)

    @classmethod
    def from_env(cls) -> 'BackupRestoreConfig':
        """Create complete config from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            restore=RestoreConfig.from_env()
        )

    def to_dict(self) -> dict:
        """Convert config to a flat dictionary of the active settings."""
        config_dict = {
            'store_backend': self.store.backend,
            'work_directory': self.restore.work_directory,
            'data_loss_mode': self.restore.data_loss_mode.value,
            'restore_policy': self.restore.restore_policy.value,
        }

        if self.store.backend == "file":
            config_dict['file_root'] = self.store.file_root
        elif self.store.backend == "blob":
            config_dict['blob_bucket'] = self.store.blob_bucket
            config_dict['blob_endpoint_url'] = self.store.blob_endpoint_url
            config_dict['blob_region'] = self.store.blob_region
            config_dict['retry_base_delay'] = self.store.retry_base_delay
            config_dict['max_retries'] = self.store.max_retries
            config_dict['list_page_size'] = self.store.list_page_size

        return config_dict


def validate_config(config: BackupRestoreConfig) -> list[str]:
    """Validate configuration and return list of warnings.

    Args:
        config: Configuration to validate

    Returns:
        List of warning messages (empty if no issues)
    """
    warnings = []

    if config.store.backend == "file":
        root = Path(config.store.file_root).resolve()
        work = Path(config.restore.work_directory).resolve()
        if root == work or work in root.parents:
            warnings.append(f"file_root ({root}) lies inside work_directory ({work}); scratch cleanup may touch it")

    if config.store.backend == "blob":
        if config.store.max_retries == 0:
            warnings.append("max_retries is 0, transient object store errors will not be retried")
        if config.store.max_retries > 20:
            warnings.append(f"Very high max_retries ({config.store.max_retries}) may stall operations for minutes")

    if config.restore.data_loss_mode == DataLossMode.PARTIAL:
        warnings.append("Partial data loss may not trigger a restore on every replica")

    return warnings
