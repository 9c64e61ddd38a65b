"""Global pytest configuration and fixtures."""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Import fixtures from storage base to make them globally available
from tests.storage.base.fixtures import (
    partition_id,
    payload_dir,
)

# Re-export fixtures for global use
__all__ = [
    "partition_id",
    "payload_dir",
]
