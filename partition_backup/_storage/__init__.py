"""Store backends with lazy loading support."""

from typing import TYPE_CHECKING

# Always import factory and registration (lightweight)
from .factory import StoreFactory, create_backup_store, _register_backends

# Type checking imports (no runtime cost)
if TYPE_CHECKING:
    from .store_file import FileBackupStore
    from .store_blob import BlobBackupStore


def __getattr__(name):
    """Lazy import store backends so aioboto3 is only loaded when used."""
    if name == "FileBackupStore":
        from .store_file import FileBackupStore
        return FileBackupStore
    elif name == "BlobBackupStore":
        from .store_blob import BlobBackupStore
        return BlobBackupStore
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "StoreFactory",
    "create_backup_store",
    "_register_backends",
    "FileBackupStore",
    "BlobBackupStore",
]
