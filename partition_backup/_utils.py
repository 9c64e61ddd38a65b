import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Union
from uuid import UUID

from .exceptions import InvalidArgumentError
from .models import BackupOption

logger = logging.getLogger("partition-backup")

# Backup folder names; 24-hour clock so AM and PM uploads never share a folder
FOLDER_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

METADATA_FILE_NAME = "backuprestore.metadata"
# Left behind when a crash interrupts the atomic sidecar write
METADATA_TEMP_FILE_NAME = f".{METADATA_FILE_NAME}.tmp"
RESERVED_FILE_NAMES = frozenset({METADATA_FILE_NAME, METADATA_TEMP_FILE_NAME})
QUEUE_FOLDER_NAME = "Queue"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_folder_timestamp(timestamp: datetime) -> str:
    """Format a timestamp the way backup folders are named."""
    return timestamp.strftime(FOLDER_TIMESTAMP_FORMAT)


def as_uuid(value: Union[UUID, str], name: str) -> UUID:
    """Coerce a UUID or its dashed / 32-hex string form into a UUID.

    Args:
        value: Identifier to check
        name: Argument name used in the error message

    Returns:
        The identifier as UUID

    Raises:
        InvalidArgumentError: If the value is empty or not a UUID
    """
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{name} must be a UUID, got {value!r}")
    try:
        return UUID(value.strip())
    except ValueError as e:
        raise InvalidArgumentError(f"{name} must be a UUID, got {value!r}") from e


def require_text(value: str, name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgumentError(f"Value cannot be null or whitespace: {name}")
    return str(value)


def require_directory(path: Union[str, os.PathLike], name: str) -> Path:
    """Return path as Path, failing if it is blank or not an existing directory."""
    if path is None or not str(path).strip():
        raise InvalidArgumentError(f"Value cannot be null or whitespace: {name}")
    directory = Path(path)
    if not directory.is_dir():
        raise InvalidArgumentError(f"{name} is not an existing directory: {directory}")
    return directory


def as_backup_option(value) -> BackupOption:
    if isinstance(value, BackupOption):
        return value
    try:
        return BackupOption(value)
    except ValueError as e:
        raise InvalidArgumentError(f"Unknown backup option: {value!r}") from e


def require_backup_source(path: Union[str, os.PathLike], name: str) -> Path:
    """Like require_directory, also rejecting folders that would shadow the sidecar."""
    directory = require_directory(path, name)
    clashes = sorted(n for n in RESERVED_FILE_NAMES if (directory / n).exists())
    if clashes:
        raise InvalidArgumentError(f"{name} contains reserved file names {clashes}: {directory}")
    return directory
