"""Contracts for the central backup store and the host-side collaborators."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union
from uuid import UUID

from .models import BackupMetadata, BackupOption

PathLike = Union[str, Path]


class DataLossMode(str, Enum):
    FULL = "FullDataLoss"
    PARTIAL = "PartialDataLoss"


class RestorePolicy(str, Enum):
    FORCE = "Force"
    SAFE = "Safe"


@dataclass(frozen=True)
class ServiceContext:
    """Identity and scratch space of the partition replica running the operations."""

    partition_id: UUID
    work_directory: Path
    service_name: str = ""


@dataclass(frozen=True)
class BackupInfo:
    """Result of a local snapshot, handed to the post-backup callback."""

    directory: Path
    option: BackupOption


PostBackupCallback = Callable[[BackupInfo], Awaitable[bool]]


class BaseCentralBackupStore(ABC):
    """Durable, partition-addressable store for backup payloads and metadata.

    Implementations must commit metadata strictly after the payload copy has
    completed, so a failed or cancelled upload never shows up in listings.
    """

    @abstractmethod
    async def upload_backup_folder(
        self,
        backup_option: BackupOption,
        partition_id: UUID,
        source_directory: PathLike,
    ) -> BackupMetadata:
        """Copy a local folder (recursively) into a new backup location.

        Args:
            backup_option: Full or incremental
            partition_id: Partition the backup was taken from
            source_directory: Local folder holding the snapshot

        Returns:
            The committed metadata record
        """
        ...

    @abstractmethod
    async def store_backup_metadata(self, destination: str, metadata: BackupMetadata) -> None:
        """Write the metadata sidecar for a payload already copied to destination."""
        ...

    @abstractmethod
    async def download_backup_folder(self, backup_id: UUID, destination_directory: PathLike) -> None:
        """Copy the payload of backup_id to a local folder, creating it if absent.

        Raises:
            BackupNotFoundError: No metadata record matches backup_id
            DuplicateBackupMetadataError: More than one record matches
        """
        ...

    @abstractmethod
    async def get_backup_metadata(
        self,
        backup_id: Optional[UUID] = None,
        partition_id: Optional[UUID] = None,
    ) -> List[BackupMetadata]:
        """List metadata matching both optional filters, in no particular order."""
        ...

    @abstractmethod
    async def schedule_restore(self, partition_id: UUID, backup_id: UUID) -> None:
        """Upsert the restore marker of a partition."""
        ...

    @abstractmethod
    async def consume_scheduled_restore(self, partition_id: UUID) -> Optional[BackupMetadata]:
        """Read and delete the restore marker of a partition.

        Returns:
            Metadata of the scheduled backup, or None when nothing is scheduled

        Raises:
            StoreCorruptionError: The marker names a backup that no longer exists
        """
        ...


class LocalBackupCollaborator(ABC):
    """Host side that snapshots local replica state."""

    @abstractmethod
    async def backup(self, option: BackupOption, on_complete: PostBackupCallback) -> None:
        """Create a local snapshot and await on_complete with its location."""
        ...


class LocalRestoreCollaborator(ABC):
    """Host side that replaces local replica state from a folder."""

    @abstractmethod
    async def restore(self, directory: Path, policy: RestorePolicy) -> None:
        ...


class DataLossTrigger(ABC):
    """Host side that induces a data-loss event for a partition.

    Fire-and-forget: the host later calls back into the data-loss handler.
    """

    @abstractmethod
    async def start_partition_data_loss(
        self,
        operation_id: UUID,
        partition_id: UUID,
        mode: DataLossMode,
    ) -> None:
        ...
