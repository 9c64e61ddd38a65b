"""Base test suites for central backup stores."""

from .store_suite import BaseBackupStoreTestSuite
from .fake_s3 import FakeBody, FakeS3Client, FakeSession, client_error
from .fixtures import (
    PAYLOAD_FILES,
    partition_id,
    payload_dir,
    read_tree,
    timestamps,
    write_payload,
)

__all__ = [
    "BaseBackupStoreTestSuite",
    "FakeBody",
    "FakeS3Client",
    "FakeSession",
    "client_error",
    "PAYLOAD_FILES",
    "partition_id",
    "payload_dir",
    "read_tree",
    "timestamps",
    "write_payload",
]
