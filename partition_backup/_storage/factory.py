"""Store factory for centralized backend creation."""

from typing import Callable, Dict, Type

from partition_backup.base import BaseCentralBackupStore
from partition_backup.config import StoreConfig


class StoreFactory:
    """Factory for creating central backup stores with validation and registration."""

    _backends: Dict[str, Callable[[], Type[BaseCentralBackupStore]]] = {}

    ALLOWED_BACKENDS = {"file", "blob"}

    @classmethod
    def register(cls, name: str, backend_loader: Callable[[], Type[BaseCentralBackupStore]]) -> None:
        """Register a store backend.

        Args:
            name: Backend name (must be in ALLOWED_BACKENDS)
            backend_loader: Function that returns the store class

        Raises:
            ValueError: If backend name not in allowed list
        """
        if name not in cls.ALLOWED_BACKENDS:
            raise ValueError(f"Backend {name} not in allowed store backends: {cls.ALLOWED_BACKENDS}")
        cls._backends[name] = backend_loader

    @classmethod
    def create(cls, config: StoreConfig) -> BaseCentralBackupStore:
        """Create a store instance for config.backend.

        Args:
            config: Store configuration

        Returns:
            Store instance; blob stores connect lazily on first use

        Raises:
            ValueError: If backend not registered
        """
        if config.backend not in cls._backends:
            _register_backends()
            if config.backend not in cls._backends:
                raise ValueError(f"Unknown store backend: {config.backend}. Available: {list(cls._backends.keys())}")

        backend_class = cls._backends[config.backend]()

        if config.backend == "blob":
            return backend_class(
                config.blob_bucket,
                endpoint_url=config.blob_endpoint_url,
                region=config.blob_region,
                retry_base_delay=config.retry_base_delay,
                max_retries=config.max_retries,
                page_size=config.list_page_size,
            )
        return backend_class(config.file_root)


def create_backup_store(config: StoreConfig) -> BaseCentralBackupStore:
    return StoreFactory.create(config)


def _get_file_store():
    """Lazy loader for the filesystem store."""
    from .store_file import FileBackupStore
    return FileBackupStore


def _get_blob_store():
    """Lazy loader for the S3 blob store."""
    from .store_blob import BlobBackupStore
    return BlobBackupStore


def _register_backends():
    """Register built-in backends with lazy loaders. Called when factory is first used."""
    if not StoreFactory._backends:
        StoreFactory.register("file", _get_file_store)
        StoreFactory.register("blob", _get_blob_store)
