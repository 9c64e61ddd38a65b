"""Tests for the S3 backup store using an in-memory client."""

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from botocore.exceptions import EndpointConnectionError

from partition_backup import BackupMetadata, BackupOption, BackupStoreError, InvalidArgumentError
from partition_backup._storage.store_blob import BlobBackupStore, _is_transient
from partition_backup._utils import METADATA_FILE_NAME
from tests.storage.base import FakeSession, client_error, timestamps


AFTERNOON = datetime(2024, 3, 1, 15, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def store(session):
    return BlobBackupStore("PartitionBackups", session=session, retry_base_delay=0, max_retries=3, page_size=2)


def test_bucket_name_is_normalized(store):
    assert store.bucket == "partitionbackups"


def test_blank_bucket_rejected():
    with pytest.raises(InvalidArgumentError):
        BlobBackupStore("  ")


def test_client_receives_endpoint_and_region(session):
    store = BlobBackupStore(session=session, endpoint_url="http://localhost:9000", region="eu-west-1")
    store._client()
    assert session.client_kwargs[-1] == {"endpoint_url": "http://localhost:9000", "region_name": "eu-west-1"}


@pytest.mark.parametrize(
    "error,expected",
    [
        (client_error("SlowDown", "PutObject", 503), True),
        (client_error("InternalError", "GetObject", 500), True),
        (client_error("RequestTimeout", "GetObject", 400), True),
        (client_error("AccessDenied", "PutObject", 403), False),
        (client_error("NoSuchKey", "GetObject", 404), False),
        (EndpointConnectionError(endpoint_url="http://localhost:9000"), True),
        (ValueError("bad"), False),
    ],
)
def test_transient_classification(error, expected):
    assert _is_transient(error) is expected


@pytest.mark.asyncio
async def test_bucket_created_once(store, session, partition_id):
    assert not session.s3.bucket_exists

    await store.get_backup_metadata()
    await store.consume_scheduled_restore(partition_id)

    assert session.s3.bucket_exists
    assert session.s3.calls["head_bucket"] == 1
    assert session.s3.calls["create_bucket"] == 1


@pytest.mark.asyncio
async def test_existing_bucket_is_reused(store, session):
    session.s3.bucket_exists = True
    await store.get_backup_metadata()
    assert "create_bucket" not in session.s3.calls


@pytest.mark.asyncio
async def test_upload_layout_and_tags(store, session, partition_id, payload_dir):
    with patch("partition_backup._storage.store_blob.utc_now", return_value=AFTERNOON):
        metadata = await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)

    prefix = f"root/{partition_id.hex}/20240301150405"
    assert f"{prefix}/data.bin" in session.s3.objects
    assert f"{prefix}/log/archive/checkpoint" in session.s3.objects

    sidecar = session.s3.objects[f"{prefix}/{METADATA_FILE_NAME}"]
    assert json.loads(sidecar["Body"])["BackupId"] == str(metadata.backup_id)
    assert sidecar["Metadata"] == {
        "backupid": metadata.backup_id.hex,
        "backupoption": "Full",
        "originalpartitionid": partition_id.hex,
        "timestamputc": AFTERNOON.isoformat(),
    }


@pytest.mark.asyncio
async def test_metadata_read_from_body_without_tags(store, session, partition_id):
    metadata = BackupMetadata.create(partition_id, BackupOption.INCREMENTAL, AFTERNOON)
    session.s3.bucket_exists = True
    session.s3.objects[f"root/{partition_id.hex}/20240301150405/{METADATA_FILE_NAME}"] = {
        "Body": metadata.to_json().encode("utf-8"),
        "Metadata": {},
    }

    listed = await store.get_backup_metadata(partition_id=partition_id)

    assert listed == [metadata]
    assert listed[0].backup_option == BackupOption.INCREMENTAL
    assert session.s3.calls["get_object"] == 1


@pytest.mark.asyncio
async def test_unreadable_sidecar_is_skipped(store, session, partition_id, payload_dir):
    metadata = await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)
    session.s3.objects[f"root/{partition_id.hex}/19990101000000/{METADATA_FILE_NAME}"] = {
        "Body": b"{not json",
        "Metadata": {},
    }

    assert await store.get_backup_metadata() == [metadata]


@pytest.mark.asyncio
async def test_listing_follows_continuation_tokens(store, session, payload_dir):
    with patch("partition_backup._storage.store_blob.utc_now", side_effect=timestamps(3)):
        created = [
            await store.upload_backup_folder(BackupOption.FULL, uuid.uuid4(), payload_dir)
            for _ in range(3)
        ]

    session.s3.calls.clear()
    assert set(await store.get_backup_metadata()) == set(created)
    # Payload, sidecar and claim make six objects per backup, two per page
    assert session.s3.calls["list_objects_v2"] == 9


@pytest.mark.asyncio
async def test_transient_errors_are_retried(store, session, partition_id):
    session.s3.failures["put_object"] = [
        client_error("SlowDown", "PutObject", 503),
        client_error("ServiceUnavailable", "PutObject", 503),
    ]

    await store.schedule_restore(partition_id, uuid.uuid4())

    assert session.s3.calls["put_object"] == 3
    assert f"root/Queue/{partition_id.hex}" in session.s3.objects


@pytest.mark.asyncio
async def test_retry_budget_exhausted(store, session, partition_id):
    session.s3.failures["put_object"] = [client_error("SlowDown", "PutObject", 503) for _ in range(3)]

    with pytest.raises(BackupStoreError):
        await store.schedule_restore(partition_id, uuid.uuid4())
    assert session.s3.calls["put_object"] == 3


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried(store, session, partition_id):
    session.s3.failures["put_object"] = [client_error("AccessDenied", "PutObject", 403)]

    with pytest.raises(BackupStoreError) as exc_info:
        await store.schedule_restore(partition_id, uuid.uuid4())

    assert session.s3.calls["put_object"] == 1
    assert "AccessDenied" in str(exc_info.value.__cause__)


@pytest.mark.asyncio
async def test_failed_payload_upload_leaves_no_metadata(store, session, partition_id, payload_dir):
    session.s3.failures["upload_file"] = [client_error("AccessDenied", "PutObject", 403)]

    with pytest.raises(BackupStoreError):
        await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)

    assert await store.get_backup_metadata() == []


@pytest.mark.asyncio
async def test_consume_deletes_marker(store, session, partition_id, payload_dir):
    metadata = await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)
    await store.schedule_restore(partition_id, metadata.backup_id)

    assert await store.consume_scheduled_restore(partition_id) == metadata
    assert f"root/Queue/{partition_id.hex}" not in session.s3.objects


@pytest.mark.asyncio
async def test_delete_bucket(store, session, partition_id, payload_dir):
    await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)

    await store.delete_bucket()

    assert session.s3.objects == {}
    assert not session.s3.bucket_exists
    assert await store.get_backup_metadata() == []


@pytest.mark.asyncio
async def test_upload_claims_prefix(store, session, partition_id, payload_dir):
    with patch("partition_backup._storage.store_blob.utc_now", return_value=AFTERNOON):
        await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)

    assert f"root/{partition_id.hex}/20240301150405.claim" in session.s3.objects


@pytest.mark.asyncio
async def test_claimed_and_occupied_prefixes_are_skipped(store, session, partition_id, payload_dir):
    base = f"root/{partition_id.hex}/20240301150405"
    session.s3.bucket_exists = True
    # Claimed by an upload still in flight
    session.s3.objects[f"{base}.claim"] = {"Body": b"", "Metadata": {}}
    # Written without a claim
    session.s3.objects[f"{base}_1/data.bin"] = {"Body": b"old", "Metadata": {}}

    with patch("partition_backup._storage.store_blob.utc_now", return_value=AFTERNOON):
        metadata = await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)

    assert f"{base}_2/{METADATA_FILE_NAME}" in session.s3.objects
    assert session.s3.objects[f"{base}_1/data.bin"]["Body"] == b"old"
    assert await store.get_backup_metadata(partition_id=partition_id) == [metadata]


@pytest.mark.asyncio
async def test_claim_errors_other_than_conflict_fail_upload(store, session, partition_id, payload_dir):
    session.s3.failures["put_object"] = [client_error("AccessDenied", "PutObject", 403)]

    with pytest.raises(BackupStoreError):
        await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)
    assert "upload_file" not in session.s3.calls


@pytest.mark.asyncio
async def test_partition_filter_narrows_listing(store, session, partition_id, payload_dir):
    mine = await store.upload_backup_folder(BackupOption.FULL, partition_id, payload_dir)
    for _ in range(3):
        await store.upload_backup_folder(BackupOption.FULL, uuid.uuid4(), payload_dir)

    session.s3.calls.clear()
    assert await store.get_backup_metadata(partition_id=partition_id) == [mine]
    assert session.s3.calls["head_object"] == 1

    session.s3.calls.clear()
    assert len(await store.get_backup_metadata()) == 4
    assert session.s3.calls["head_object"] == 4
