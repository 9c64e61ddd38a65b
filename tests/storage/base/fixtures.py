"""Shared fixtures and test data for store testing."""

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List

import pytest


PAYLOAD_FILES: Dict[str, bytes] = {
    "data.bin": bytes(range(256)) * 4,
    "log/000001.log": b"first log segment\n",
    "log/000002.log": b"second log segment\n",
    "log/archive/checkpoint": b"\x00\x01checkpoint\xff",
}


def write_payload(folder: Path, files: Dict[str, bytes] = PAYLOAD_FILES) -> Path:
    """Create a local backup folder holding files (relative path -> content)."""
    for relative, content in files.items():
        target = folder / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    return folder


def read_tree(folder: Path) -> Dict[str, bytes]:
    """Relative path -> content for every file below folder."""
    return {
        p.relative_to(folder).as_posix(): p.read_bytes()
        for p in sorted(folder.rglob("*"))
        if p.is_file()
    }


def timestamps(count: int, start: datetime = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)) -> List[datetime]:
    """Strictly increasing UTC timestamps one minute apart."""
    return [start + timedelta(minutes=i) for i in range(count)]


@pytest.fixture
def partition_id() -> uuid.UUID:
    return uuid.UUID("6f0b5c8e-2a44-4c2e-9d6b-1c3e5f7a9b0d")


@pytest.fixture
def payload_dir(tmp_path) -> Path:
    """Local backup folder with nested files."""
    return write_payload(tmp_path / "local_backup")
