"""Example of configuring partition-backup and running a backup/restore cycle."""

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path

from partition_backup import (
    BackupInfo,
    BackupOption,
    BackupRestoreConfig,
    BackupRestoreOperations,
    DataLossTrigger,
    LocalBackupCollaborator,
    LocalRestoreCollaborator,
    RestoreConfig,
    StoreConfig,
    validate_config,
)


class DirectorySnapshot(LocalBackupCollaborator):
    """Treats a plain directory as the replica state."""

    def __init__(self, state_dir: Path, snapshot_root: Path):
        self.state_dir = state_dir
        self.snapshot_root = snapshot_root

    async def backup(self, option, on_complete):
        snapshot = self.snapshot_root / uuid.uuid4().hex
        shutil.copytree(self.state_dir, snapshot)
        await on_complete(BackupInfo(snapshot, option))


class DirectoryRestore(LocalRestoreCollaborator):
    """Replays every backup folder of the chain over the state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    async def restore(self, directory, policy):
        for backup_folder in sorted(directory.iterdir()):
            shutil.copytree(backup_folder, self.state_dir, dirs_exist_ok=True)
        print(f"Restored {len(list(directory.iterdir()))} backups with policy {policy.value}")


class ImmediateDataLoss(DataLossTrigger):
    """Stands in for the host: reports the data loss right away."""

    def __init__(self):
        self.operations = None
        self.restore = None

    async def start_partition_data_loss(self, operation_id, partition_id, mode):
        print(f"Data loss {operation_id} ({mode.value}) requested for {partition_id}")
        await self.operations.on_data_loss(self.restore)


def example_default_config():
    """Show the defaults."""
    print("=== Default Configuration ===")
    config = BackupRestoreConfig()
    print(config.to_dict())


def example_env_config():
    """Read configuration from environment variables."""
    print("\n=== Environment Variable Configuration ===")

    # Normally these would be in your shell or .env
    os.environ["BACKUP_STORE_BACKEND"] = "blob"
    os.environ["BACKUP_BLOB_BUCKET"] = "cluster-backups"
    os.environ["BACKUP_BLOB_ENDPOINT_URL"] = "http://localhost:9000"
    os.environ["BACKUP_MAX_RETRIES"] = "0"

    config = BackupRestoreConfig.from_env()
    print(config.to_dict())
    for warning in validate_config(config):
        print(f"Warning: {warning}")


async def example_backup_and_restore():
    """Back up a directory twice and restore the incremental chain."""
    print("\n=== Backup and Restore on a Local Share ===")

    workspace = Path(tempfile.mkdtemp())
    try:
        state_dir = workspace / "state"
        state_dir.mkdir()
        (state_dir / "base.db").write_text("base")

        config = BackupRestoreConfig(
            store=StoreConfig(backend="file", file_root=str(workspace / "share")),
            restore=RestoreConfig(work_directory=str(workspace / "scratch")),
        )
        trigger = ImmediateDataLoss()
        operations = BackupRestoreOperations.from_config(
            config,
            uuid.uuid4(),
            backup_collaborator=DirectorySnapshot(state_dir, workspace / "snapshots"),
            data_loss_trigger=trigger,
            log_callback=print,
        )
        trigger.operations = operations
        trigger.restore = DirectoryRestore(state_dir)

        await operations.begin_create_backup(BackupOption.FULL)
        (state_dir / "delta.log").write_text("delta")
        await operations.begin_create_backup(BackupOption.INCREMENTAL)

        shutil.rmtree(state_dir)
        state_dir.mkdir()

        latest = (await operations.list_backups())[0]
        await operations.begin_restore_backup(latest)
        print(f"State after restore: {sorted(p.name for p in state_dir.iterdir())}")
    finally:
        shutil.rmtree(workspace)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    example_default_config()
    example_env_config()
    asyncio.run(example_backup_and_restore())
