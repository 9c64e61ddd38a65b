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
from .chain import build_backup_chain, resolve_backup_chain
from .config import BackupRestoreConfig, RestoreConfig, StoreConfig, validate_config
from .exceptions import (
    BackupChainIntegrityError,
    BackupNotFoundError,
    BackupOperationError,
    BackupRestoreError,
    BackupStoreError,
    DuplicateBackupMetadataError,
    InvalidArgumentError,
    StoreCorruptionError,
)
from .models import BackupMetadata, BackupOption
from .operations import BackupRestoreOperations

__version__ = "0.1.0"
__author__ = "Partition Backup Team"
__url__ = "https://github.com/partition-backup/partition-backup"
