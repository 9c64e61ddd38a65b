"""Backup creation and restore orchestration for one partition replica."""

import logging
from pathlib import Path
from typing import Callable, List, Optional
from uuid import UUID, uuid4

from .base import (
    BackupInfo,
    BaseCentralBackupStore,
    DataLossMode,
    DataLossTrigger,
    LocalBackupCollaborator,
    LocalRestoreCollaborator,
    RestorePolicy,
    ServiceContext,
)
from .chain import resolve_backup_chain
from .config import BackupRestoreConfig, RestoreConfig
from .exceptions import BackupChainIntegrityError, BackupOperationError, InvalidArgumentError
from .models import BackupMetadata, BackupOption
from ._storage import create_backup_store
from ._storage.folder_copy import remove_folder
from ._utils import as_backup_option, as_uuid, format_folder_timestamp, logger


def _newest_first(backups: List[BackupMetadata]) -> List[BackupMetadata]:
    return sorted(backups, key=lambda m: (m.timestamp_utc, m.backup_id.hex), reverse=True)


class BackupRestoreOperations:
    """Backup and restore operations of a single partition.

    Creating a backup asks the local backup collaborator for a snapshot and
    uploads it from ``post_backup_callback``. Restoring is split in two:
    ``begin_restore_backup`` stores a restore marker and asks the host to
    induce data loss; the host later calls ``on_data_loss``, which consumes
    the marker, resolves the backup chain, downloads it and hands it to the
    local restore collaborator.

    Every public operation logs its start and outcome to the package logger
    and to the optional ``log_callback``, and wraps failures in
    ``BackupOperationError`` naming the partition and the failed stage.
    """

    def __init__(
        self,
        store: BaseCentralBackupStore,
        context: ServiceContext,
        backup_collaborator: Optional[LocalBackupCollaborator] = None,
        data_loss_trigger: Optional[DataLossTrigger] = None,
        log_callback: Optional[Callable[[str], None]] = None,
        restore_config: Optional[RestoreConfig] = None,
    ):
        if store is None:
            raise InvalidArgumentError("store is required")
        if context is None:
            raise InvalidArgumentError("context is required")

        self.store = store
        self.context = context
        self.backup_collaborator = backup_collaborator
        self.data_loss_trigger = data_loss_trigger
        self.log_callback = log_callback
        self.restore_config = restore_config or RestoreConfig(work_directory=str(context.work_directory))

    @classmethod
    def from_config(
        cls,
        config: BackupRestoreConfig,
        partition_id: UUID,
        service_name: str = "",
        **collaborators,
    ) -> "BackupRestoreOperations":
        """Build the store and context described by config."""
        context = ServiceContext(
            partition_id=as_uuid(partition_id, "partition_id"),
            work_directory=Path(config.restore.work_directory),
            service_name=service_name,
        )
        return cls(
            create_backup_store(config.store),
            context,
            restore_config=config.restore,
            **collaborators,
        )

    @property
    def partition_id(self) -> UUID:
        return self.context.partition_id

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self.log_callback is not None:
            self.log_callback(message)

    def _fail(self, operation: str, message: str, stage: str, error: BaseException) -> BackupOperationError:
        self._log(
            f"{operation} failed for partition {self.partition_id}. Message: {message} - Error: {error}",
            logging.ERROR,
        )
        return BackupOperationError(message, self.partition_id, stage, error)

    async def begin_create_backup(self, backup_option: BackupOption = BackupOption.FULL) -> None:
        """Ask the local backup collaborator for a snapshot that is then uploaded."""
        backup_option = as_backup_option(backup_option)
        if self.backup_collaborator is None:
            raise InvalidArgumentError("No local backup collaborator configured")

        self._log(f"BeginCreateBackup - Starting {backup_option.value} backup for partition {self.partition_id}")
        try:
            await self.backup_collaborator.backup(backup_option, self.post_backup_callback)
        except BackupOperationError:
            raise
        except Exception as e:
            raise self._fail("BeginCreateBackup", "Failed to create backup", "create_backup", e) from e

        self._log(f"BeginCreateBackup - Succeeded for partition {self.partition_id}")

    async def post_backup_callback(self, backup_info: BackupInfo) -> bool:
        """Upload a finished local snapshot to the central store.

        Returns:
            True once the backup and its metadata are stored
        """
        self._log(f"PostBackupCallback - Uploading {backup_info.directory} for partition {self.partition_id}")
        try:
            metadata = await self.store.upload_backup_folder(
                backup_info.option, self.partition_id, backup_info.directory
            )
        except Exception as e:
            raise self._fail("PostBackupCallback", "Failed to upload backup", "upload", e) from e

        self._log(f"PostBackupCallback - Uploaded backup {metadata.backup_id.hex} for partition {self.partition_id}")
        return True

    async def begin_restore_backup(
        self,
        backup_metadata: BackupMetadata,
        data_loss_mode: Optional[DataLossMode] = None,
    ) -> None:
        """Schedule backup_metadata for restore and ask the host to induce data loss.

        Returns once the data loss was requested; the restore itself happens
        later in on_data_loss.
        """
        if not isinstance(backup_metadata, BackupMetadata):
            raise InvalidArgumentError(f"backup_metadata must be BackupMetadata, got {type(backup_metadata).__name__}")
        try:
            mode = DataLossMode(data_loss_mode or self.restore_config.data_loss_mode)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown data loss mode: {data_loss_mode!r}") from e
        if self.data_loss_trigger is None:
            raise InvalidArgumentError("No data loss trigger configured")

        backup_id = backup_metadata.backup_id
        self._log(f"BeginRestoreBackup - Beginning restore of backup {backup_id.hex} for partition {self.partition_id}")

        try:
            await self.store.schedule_restore(self.partition_id, backup_id)
        except Exception as e:
            raise self._fail("BeginRestoreBackup", "Failed to schedule restore", "schedule", e) from e

        try:
            # Causes the host to call on_data_loss later on
            await self.data_loss_trigger.start_partition_data_loss(uuid4(), self.partition_id, mode)
        except Exception as e:
            raise self._fail("BeginRestoreBackup", "Failed to start data loss", "trigger_data_loss", e) from e

        self._log(f"BeginRestoreBackup - Succeeded for backup {backup_id.hex} on partition {self.partition_id}")

    async def list_backups(self) -> List[BackupMetadata]:
        """Backups of this partition, newest first."""
        self._log(f"ListBackups - Listing backups for partition {self.partition_id}")
        try:
            backups = await self.store.get_backup_metadata(partition_id=self.partition_id)
        except Exception as e:
            raise self._fail("ListBackups", "Failed to list backups", "list", e) from e

        backups = _newest_first(backups)
        self._log(f"ListBackups - Returning {len(backups)} backups")
        return backups

    async def list_all_backups(self) -> List[BackupMetadata]:
        """Backups of all partitions, newest first."""
        self._log("ListAllBackups - Listing all backups")
        try:
            backups = await self.store.get_backup_metadata()
        except Exception as e:
            raise self._fail("ListAllBackups", "Failed to list all backups", "list", e) from e

        backups = _newest_first(backups)
        self._log(f"ListAllBackups - Returning all {len(backups)} backups")
        return backups

    async def on_data_loss(
        self,
        restore_collaborator: LocalRestoreCollaborator,
        restore_policy: Optional[RestorePolicy] = None,
    ) -> bool:
        """Restore the scheduled backup chain after the host reported data loss.

        Returns:
            False if no restore was scheduled, True once local state was restored
        """
        if restore_collaborator is None:
            raise InvalidArgumentError("restore_collaborator is required")
        try:
            policy = RestorePolicy(restore_policy or self.restore_config.restore_policy)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown restore policy: {restore_policy!r}") from e

        self._log(f"OnDataLoss - Starting for partition {self.partition_id}")

        try:
            metadata = await self.store.consume_scheduled_restore(self.partition_id)
        except Exception as e:
            raise self._fail("OnDataLoss", "Failed to find backup information", "consume", e) from e

        if metadata is None:
            self._log(f"OnDataLoss - No restore scheduled for partition {self.partition_id}, no restore needed")
            return False

        try:
            chain = await resolve_backup_chain(self.store, metadata)
            if not chain:
                raise BackupChainIntegrityError("Failed to find any backups for this partition")
            if not chain[0].is_full:
                raise BackupChainIntegrityError("Failed to find any full backups for this partition")
        except Exception as e:
            raise self._fail("OnDataLoss", "Failed to resolve backup chain", "resolve_chain", e) from e

        local_backup_folder = Path(self.context.work_directory) / uuid4().hex
        try:
            try:
                for folder_name, backup in self._chain_folders(chain):
                    await self.store.download_backup_folder(backup.backup_id, local_backup_folder / folder_name)
            except Exception as e:
                raise self._fail("OnDataLoss", "Failed to download backup data", "download", e) from e

            try:
                await restore_collaborator.restore(local_backup_folder, policy)
            except Exception as e:
                raise self._fail("OnDataLoss", "Failed to restore backup", "restore", e) from e
        finally:
            await remove_folder(local_backup_folder)

        self._log(
            f"OnDataLoss - Restored {len(chain)} backups ending at {metadata.backup_id.hex} "
            f"for partition {self.partition_id}"
        )
        return True

    @staticmethod
    def _chain_folders(chain: List[BackupMetadata]):
        """Pair each chain element with a scratch sub-folder named by its timestamp."""
        used = set()
        for backup in chain:
            name = format_folder_timestamp(backup.timestamp_utc)
            candidate, attempt = name, 0
            while candidate in used:
                attempt += 1
                candidate = f"{name}_{attempt}"
            used.add(candidate)
            yield candidate, backup
