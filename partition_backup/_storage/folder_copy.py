"""Recursive folder copy used by the filesystem backend."""

import asyncio
import shutil
from pathlib import Path
from typing import FrozenSet, List, Tuple

from .._utils import logger


def list_folder(folder: Path) -> Tuple[List[Path], List[Path]]:
    """Sorted sub-folders and files directly inside folder."""
    entries = sorted(folder.iterdir())
    return [e for e in entries if e.is_dir()], [e for e in entries if e.is_file()]


async def copy_folder(
    source_folder: Path,
    destination_folder: Path,
    skip_names: FrozenSet[str] = frozenset(),
) -> Path:
    """Deep copy source_folder into destination_folder.

    Sub-folders are copied before the files of a folder. Every file copy is
    awaited separately, so cancelling the calling task stops the copy between
    two files and may leave a partially written destination.

    Args:
        source_folder: Folder to copy
        destination_folder: Target folder, created if missing
        skip_names: File names ignored at the top level of source_folder

    Returns:
        The destination folder
    """
    await asyncio.to_thread(destination_folder.mkdir, parents=True, exist_ok=True)

    directories, files = await asyncio.to_thread(list_folder, source_folder)

    for directory in directories:
        await copy_folder(directory, destination_folder / directory.name)

    for source_file in (f for f in files if f.name not in skip_names):
        await asyncio.to_thread(shutil.copy2, source_file, destination_folder / source_file.name)
        logger.debug(f"Copied {source_file} -> {destination_folder / source_file.name}")

    return destination_folder


async def remove_folder(folder: Path) -> None:
    """Remove a folder tree if it exists."""
    if folder.exists():
        await asyncio.to_thread(shutil.rmtree, folder)
