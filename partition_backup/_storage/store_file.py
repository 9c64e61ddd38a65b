"""Central backup store on a shared directory tree."""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError

from ..base import BaseCentralBackupStore, PathLike
from ..exceptions import (
    BackupNotFoundError,
    BackupStoreError,
    DuplicateBackupMetadataError,
    StoreCorruptionError,
)
from ..models import BackupMetadata, BackupOption
from .._utils import (
    METADATA_FILE_NAME,
    QUEUE_FOLDER_NAME,
    RESERVED_FILE_NAMES,
    as_backup_option,
    as_uuid,
    format_folder_timestamp,
    logger,
    require_backup_source,
    require_text,
    utc_now,
)
from .folder_copy import copy_folder


@dataclass(frozen=True)
class FileBackupRecord:
    """Metadata plus the folder (relative to the store root) holding the payload."""

    relative_folder: str
    metadata: BackupMetadata


def _write_text_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


class FileBackupStore(BaseCentralBackupStore):
    """Stores backups on disk, e.g. a network share outside the cluster.

    Layout::

        root/<partition hex>/<yyyyMMddHHmmss>/...payload...
        root/<partition hex>/<yyyyMMddHHmmss>/backuprestore.metadata
        root/Queue/<partition hex>        (restore marker, backup id as hex)
    """

    def __init__(self, root: PathLike):
        require_text(root, "root")
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def create_datetime_folder_name(self, partition_id: UUID, timestamp: datetime) -> Path:
        """Folder for a backup of partition_id taken at timestamp."""
        return self.root / partition_id.hex / format_folder_timestamp(timestamp)

    def _claim_backup_folder(self, partition_id: UUID, timestamp: datetime) -> Path:
        # Exclusive mkdir so two uploads in the same second get distinct folders
        base = self.create_datetime_folder_name(partition_id, timestamp)
        base.parent.mkdir(parents=True, exist_ok=True)
        candidate, attempt = base, 0
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                attempt += 1
                candidate = base.with_name(f"{base.name}_{attempt}")

    async def upload_backup_folder(
        self,
        backup_option: BackupOption,
        partition_id: UUID,
        source_directory: PathLike,
    ) -> BackupMetadata:
        backup_option = as_backup_option(backup_option)
        partition_id = as_uuid(partition_id, "partition_id")
        source = require_backup_source(source_directory, "source_directory")

        timestamp = utc_now()
        try:
            destination = await asyncio.to_thread(self._claim_backup_folder, partition_id, timestamp)
            await copy_folder(source, destination)

            metadata = BackupMetadata.create(partition_id, backup_option, timestamp)
            await self.store_backup_metadata(str(destination), metadata)
        except OSError as e:
            raise BackupStoreError(f"Failed to upload backup folder for partition {partition_id.hex}") from e

        logger.info(
            f"Uploaded {backup_option.value} backup {metadata.backup_id.hex} "
            f"for partition {partition_id.hex} to {destination}"
        )
        return metadata

    async def store_backup_metadata(self, destination: str, metadata: BackupMetadata) -> None:
        folder = Path(destination)
        if not folder.is_absolute():
            folder = self.root / destination.lstrip("\\/")
        metadata_file = folder / METADATA_FILE_NAME
        try:
            await asyncio.to_thread(_write_text_atomic, metadata_file, metadata.to_json())
        except OSError as e:
            raise BackupStoreError(f"Failed to store metadata for backup {metadata.backup_id.hex}") from e
        logger.debug(f"Stored backup metadata: {metadata_file}")

    async def download_backup_folder(self, backup_id: UUID, destination_directory: PathLike) -> None:
        backup_id = as_uuid(backup_id, "backup_id")
        require_text(destination_directory, "destination_directory")

        records = await self._get_backup_records(backup_id=backup_id)
        if not records:
            raise BackupNotFoundError(backup_id)
        if len(records) > 1:
            raise DuplicateBackupMetadataError(backup_id, len(records))

        source = self.root / records[0].relative_folder
        try:
            await copy_folder(source, Path(destination_directory), skip_names=RESERVED_FILE_NAMES)
        except OSError as e:
            raise BackupStoreError(f"Failed to download backup {backup_id.hex}") from e

        logger.info(f"Downloaded backup {backup_id.hex} to {destination_directory}")

    async def get_backup_metadata(
        self,
        backup_id: Optional[UUID] = None,
        partition_id: Optional[UUID] = None,
    ) -> List[BackupMetadata]:
        records = await self._get_backup_records(backup_id, partition_id)
        return [record.metadata for record in records]

    async def schedule_restore(self, partition_id: UUID, backup_id: UUID) -> None:
        partition_id = as_uuid(partition_id, "partition_id")
        backup_id = as_uuid(backup_id, "backup_id")

        try:
            queue_file = await asyncio.to_thread(self._queue_file, partition_id)
            await asyncio.to_thread(_write_text_atomic, queue_file, backup_id.hex)
        except OSError as e:
            raise BackupStoreError(f"Failed to schedule restore for partition {partition_id.hex}") from e

        logger.info(f"Scheduled restore of backup {backup_id.hex} for partition {partition_id.hex}")

    async def consume_scheduled_restore(self, partition_id: UUID) -> Optional[BackupMetadata]:
        """Read, resolve and then delete the restore marker.

        Not atomic across a crash: the marker is deleted only after the backup
        it names was found, so a crash in between leaves the marker in place
        and the next call returns the same backup again.
        """
        partition_id = as_uuid(partition_id, "partition_id")

        try:
            queue_file = await asyncio.to_thread(self._queue_file, partition_id)
            content = await asyncio.to_thread(queue_file.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackupStoreError(f"Failed to read restore marker for partition {partition_id.hex}") from e

        try:
            backup_id = UUID(content.strip())
        except ValueError as e:
            raise StoreCorruptionError(
                f"Restore marker for partition {partition_id.hex} holds an invalid backup id: {content!r}"
            ) from e

        matches = await self.get_backup_metadata(backup_id=backup_id)
        if len(matches) != 1:
            raise StoreCorruptionError(
                f"Restore marker for partition {partition_id.hex} references backup {backup_id.hex}, "
                f"found {len(matches)} metadata records"
            )

        try:
            await asyncio.to_thread(queue_file.unlink, missing_ok=True)
        except OSError as e:
            raise BackupStoreError(f"Failed to delete restore marker for partition {partition_id.hex}") from e

        logger.info(f"Consumed restore marker for partition {partition_id.hex}: backup {backup_id.hex}")
        return matches[0]

    async def _get_backup_records(
        self,
        backup_id: Optional[UUID] = None,
        partition_id: Optional[UUID] = None,
    ) -> List[FileBackupRecord]:
        backup_id = as_uuid(backup_id, "backup_id") if backup_id is not None else None
        partition_id = as_uuid(partition_id, "partition_id") if partition_id is not None else None

        try:
            records = await asyncio.to_thread(self._scan_records)
        except OSError as e:
            raise BackupStoreError(f"Failed to list backups under {self.root}") from e

        return [
            r for r in records
            if (backup_id is None or r.metadata.backup_id == backup_id)
            and (partition_id is None or r.metadata.original_partition_id == partition_id)
        ]

    def _scan_records(self) -> List[FileBackupRecord]:
        records = []
        for directory, _, files in os.walk(self.root):
            if METADATA_FILE_NAME not in files:
                continue
            metadata_file = Path(directory) / METADATA_FILE_NAME
            try:
                metadata = BackupMetadata.from_json(metadata_file.read_text(encoding="utf-8"))
            except (ValidationError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable backup metadata {metadata_file}: {e}")
                continue
            relative = Path(directory).relative_to(self.root).as_posix()
            records.append(FileBackupRecord(relative, metadata))
        return records

    def _queue_file(self, partition_id: UUID) -> Path:
        queue_folder = self.root / QUEUE_FOLDER_NAME
        queue_folder.mkdir(parents=True, exist_ok=True)
        return queue_folder / partition_id.hex
