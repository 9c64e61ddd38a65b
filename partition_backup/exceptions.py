"""Exceptions raised by the backup store and the restore orchestration."""

from typing import Optional
from uuid import UUID


class BackupRestoreError(Exception):
    """Base exception for backup/restore errors."""
    pass


class InvalidArgumentError(BackupRestoreError, ValueError):
    """Rejected before any I/O took place."""
    pass


class BackupNotFoundError(BackupRestoreError):
    def __init__(self, backup_id: UUID):
        self.backup_id = backup_id
        super().__init__(f"Backup {backup_id.hex} not found")


class BackupChainIntegrityError(BackupRestoreError):
    """The stored backup history cannot be replayed safely.

    Indicates store corruption (missing full backup, duplicate records,
    dangling restore markers). Never to be treated as "nothing to restore".
    """
    pass


class DuplicateBackupMetadataError(BackupChainIntegrityError):
    def __init__(self, backup_id: UUID, count: int):
        self.backup_id = backup_id
        self.count = count
        super().__init__(f"Found {count} backups with id {backup_id.hex}")


class StoreCorruptionError(BackupChainIntegrityError):
    pass


class BackupStoreError(BackupRestoreError):
    """A backend I/O operation failed after its retry budget."""
    pass


class BackupOperationError(BackupRestoreError):
    """An orchestration step failed for a partition."""

    def __init__(self, message: str, partition_id: UUID, stage: str, error: Optional[BaseException] = None):
        self.partition_id = partition_id
        self.stage = stage
        detail = f": {error}" if error is not None else ""
        super().__init__(f"{message} for partition {partition_id} (stage: {stage}){detail}")
