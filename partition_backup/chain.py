"""Resolve a restore point into the ordered list of backups to replay."""

from typing import Iterable, List

from .base import BaseCentralBackupStore
from .exceptions import BackupChainIntegrityError
from .models import BackupMetadata
from ._utils import logger


def _order_key(metadata: BackupMetadata):
    # Ties on the timestamp are broken by backup id so the order is stable
    return metadata.timestamp_utc, metadata.backup_id.hex


def build_backup_chain(target: BackupMetadata, history: Iterable[BackupMetadata]) -> List[BackupMetadata]:
    """Build the replay chain for target from a partition's backup history.

    A full backup is its own chain. For an incremental backup the history is
    walked backwards in time, starting at the target itself, collecting every
    backup until the first full backup, which closes the chain. Backups of
    other epochs (before that full backup, or after the target) are never
    included.

    Args:
        target: The restore point
        history: All backups of the target's partition, in any order

    Returns:
        Backups to replay, oldest first; the first element is a full backup

    Raises:
        BackupChainIntegrityError: If the target is missing from history or no
            full backup precedes it
    """
    if target.is_full:
        return [target]

    chain: List[BackupMetadata] = []
    for metadata in sorted(history, key=_order_key, reverse=True):
        if not chain and metadata.backup_id != target.backup_id:
            continue
        chain.append(metadata)
        if metadata.is_full:
            break

    if not chain:
        raise BackupChainIntegrityError(
            f"Backup {target.backup_id.hex} is missing from the history of partition "
            f"{target.original_partition_id.hex}"
        )
    if not chain[-1].is_full:
        raise BackupChainIntegrityError(
            f"No full backup precedes incremental backup {target.backup_id.hex} "
            f"of partition {target.original_partition_id.hex}"
        )

    chain.reverse()
    return chain


async def resolve_backup_chain(store: BaseCentralBackupStore, target: BackupMetadata) -> List[BackupMetadata]:
    """Fetch the target partition's history from store and build the replay chain."""
    if target.is_full:
        return [target]

    history = await store.get_backup_metadata(partition_id=target.original_partition_id)
    chain = build_backup_chain(target, history)
    logger.debug(
        f"Resolved chain of {len(chain)} backups for {target.backup_id.hex}: "
        f"{[m.backup_id.hex for m in chain]}"
    )
    return chain
