"""Central backup store on S3-compatible object storage."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID

import aioboto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
)
from pydantic import ValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..base import BaseCentralBackupStore, PathLike
from ..exceptions import (
    BackupNotFoundError,
    BackupStoreError,
    DuplicateBackupMetadataError,
    StoreCorruptionError,
)
from ..models import BackupMetadata, BackupOption
from .._utils import (
    METADATA_FILE_NAME,
    QUEUE_FOLDER_NAME,
    RESERVED_FILE_NAMES,
    as_backup_option,
    as_uuid,
    format_folder_timestamp,
    logger,
    require_backup_source,
    require_text,
    utc_now,
)
from .folder_copy import list_folder

ROOT_FOLDER = "root"

# Empty object next to a backup prefix, written with If-None-Match to reserve it
CLAIM_SUFFIX = ".claim"

# User metadata keys duplicated from the sidecar so listings skip body reads
TAG_BACKUP_ID = "BackupId"
TAG_BACKUP_OPTION = "BackupOption"
TAG_PARTITION_ID = "OriginalPartitionId"
TAG_TIMESTAMP = "TimeStampUtc"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_CLAIM_TAKEN_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}
_TRANSIENT_CODES = {
    "InternalError",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _is_not_found(error: BaseException) -> bool:
    return isinstance(error, ClientError) and _error_code(error) in _NOT_FOUND_CODES


def _is_transient(error: BaseException) -> bool:
    """Errors worth retrying: connection trouble, timeouts, throttling and 5xx."""
    if isinstance(error, (BotoConnectionError, HTTPClientError, asyncio.TimeoutError)):
        return True
    if isinstance(error, ClientError):
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return _error_code(error) in _TRANSIENT_CODES or status >= 500
    return False


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat() before 3.11 rejects the "Z" suffix
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class BlobBackupRecord:
    """Metadata plus the key prefix holding the payload."""

    prefix: str
    metadata: BackupMetadata


class BlobBackupStore(BaseCentralBackupStore):
    """Stores backups in a bucket of an S3-compatible object store.

    Layout::

        root/<partition hex>/<yyyyMMddHHmmss>/...payload...
        root/<partition hex>/<yyyyMMddHHmmss>/backuprestore.metadata
        root/<partition hex>/<yyyyMMddHHmmss>.claim   (reservation of the prefix)
        root/Queue/<partition hex>

    The sidecar object also carries the metadata as user metadata tags.
    Bucket creation is deferred until the first operation.
    """

    def __init__(
        self,
        bucket: str = "partitionbackups",
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        session: Optional[Any] = None,
        retry_base_delay: float = 1.0,
        max_retries: int = 10,
        page_size: int = 1000,
    ):
        require_text(bucket, "bucket")
        self.bucket = bucket.strip().lower()
        self.endpoint_url = endpoint_url
        self.region = region
        self.retry_base_delay = retry_base_delay
        self.max_retries = max_retries
        self.page_size = page_size

        self._session = session
        self._initialized = False

        # Cache retry decorator to avoid recreation overhead
        self._retry_decorator = self._get_retry_decorator()

    @property
    def session(self):
        if self._session is None:
            self._session = aioboto3.Session()
        return self._session

    def _get_retry_decorator(self):
        """Bounded exponential retry applied to every object store call."""
        return retry(
            stop=stop_after_attempt(max(1, self.max_retries)),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=60),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

    def _client(self):
        kwargs = {}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if self.region:
            kwargs["region_name"] = self.region
        return self.session.client("s3", **kwargs)

    async def _call(self, operation, **kwargs):
        retried_func = self._retry_decorator(operation)
        return await retried_func(**kwargs)

    async def _ensure_initialized(self) -> None:
        """Create the bucket if it does not exist yet, once per instance."""
        if self._initialized:
            return

        async with self._client() as s3:
            try:
                await self._call(s3.head_bucket, Bucket=self.bucket)
            except ClientError as e:
                if not _is_not_found(e) and _error_code(e) != "NoSuchBucket":
                    raise
                params: Dict[str, Any] = {"Bucket": self.bucket}
                if self.region and self.region != "us-east-1":
                    params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
                try:
                    await self._call(s3.create_bucket, **params)
                    logger.info(f"Created bucket {self.bucket}")
                except ClientError as create_error:
                    # Another instance won the race
                    if _error_code(create_error) != "BucketAlreadyOwnedByYou":
                        raise

        self._initialized = True

    def create_datetime_folder_name(self, partition_id: UUID, timestamp: datetime) -> str:
        return f"{ROOT_FOLDER}/{partition_id.hex}/{format_folder_timestamp(timestamp)}"

    async def upload_backup_folder(
        self,
        backup_option: BackupOption,
        partition_id: UUID,
        source_directory: PathLike,
    ) -> BackupMetadata:
        backup_option = as_backup_option(backup_option)
        partition_id = as_uuid(partition_id, "partition_id")
        source = require_backup_source(source_directory, "source_directory")

        try:
            await self._ensure_initialized()

            timestamp = utc_now()
            async with self._client() as s3:
                destination = await self._claim_prefix(s3, partition_id, timestamp)
                await self._upload_folder(s3, source, destination)

            metadata = BackupMetadata.create(partition_id, backup_option, timestamp)
            await self.store_backup_metadata(destination, metadata)
        except (BotoCoreError, ClientError, OSError) as e:
            raise BackupStoreError(f"Failed to upload backup folder for partition {partition_id.hex}") from e

        logger.info(
            f"Uploaded {backup_option.value} backup {metadata.backup_id.hex} "
            f"for partition {partition_id.hex} to s3://{self.bucket}/{destination}"
        )
        return metadata

    async def store_backup_metadata(self, destination: str, metadata: BackupMetadata) -> None:
        key = f"{destination.strip('/')}/{METADATA_FILE_NAME}"
        tags = {
            TAG_BACKUP_ID: metadata.backup_id.hex,
            TAG_BACKUP_OPTION: metadata.backup_option.value,
            TAG_PARTITION_ID: metadata.original_partition_id.hex,
            TAG_TIMESTAMP: metadata.timestamp_utc.isoformat(),
        }
        try:
            await self._ensure_initialized()
            async with self._client() as s3:
                await self._call(
                    s3.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=metadata.to_json().encode("utf-8"),
                    ContentType="application/json",
                    Metadata=tags,
                )
        except (BotoCoreError, ClientError) as e:
            raise BackupStoreError(f"Failed to store metadata for backup {metadata.backup_id.hex}") from e

        logger.debug(f"Stored backup metadata: s3://{self.bucket}/{key}")

    async def download_backup_folder(self, backup_id: UUID, destination_directory: PathLike) -> None:
        backup_id = as_uuid(backup_id, "backup_id")
        require_text(destination_directory, "destination_directory")

        records = await self._get_backup_records(backup_id=backup_id)
        if not records:
            raise BackupNotFoundError(backup_id)
        if len(records) > 1:
            raise DuplicateBackupMetadataError(backup_id, len(records))

        try:
            async with self._client() as s3:
                await self._download_folder(s3, records[0].prefix, Path(destination_directory), top_level=True)
        except (BotoCoreError, ClientError, OSError) as e:
            raise BackupStoreError(f"Failed to download backup {backup_id.hex}") from e

        logger.info(f"Downloaded backup {backup_id.hex} to {destination_directory}")

    async def get_backup_metadata(
        self,
        backup_id: Optional[UUID] = None,
        partition_id: Optional[UUID] = None,
    ) -> List[BackupMetadata]:
        records = await self._get_backup_records(backup_id, partition_id)
        return [record.metadata for record in records]

    async def schedule_restore(self, partition_id: UUID, backup_id: UUID) -> None:
        partition_id = as_uuid(partition_id, "partition_id")
        backup_id = as_uuid(backup_id, "backup_id")

        try:
            await self._ensure_initialized()
            async with self._client() as s3:
                await self._call(
                    s3.put_object,
                    Bucket=self.bucket,
                    Key=self._queue_key(partition_id),
                    Body=backup_id.hex.encode("utf-8"),
                    ContentType="text/plain",
                )
        except (BotoCoreError, ClientError) as e:
            raise BackupStoreError(f"Failed to schedule restore for partition {partition_id.hex}") from e

        logger.info(f"Scheduled restore of backup {backup_id.hex} for partition {partition_id.hex}")

    async def consume_scheduled_restore(self, partition_id: UUID) -> Optional[BackupMetadata]:
        partition_id = as_uuid(partition_id, "partition_id")
        queue_key = self._queue_key(partition_id)

        try:
            await self._ensure_initialized()
            async with self._client() as s3:
                try:
                    response = await self._call(s3.get_object, Bucket=self.bucket, Key=queue_key)
                except ClientError as e:
                    if _is_not_found(e):
                        return None
                    raise
                async with response["Body"] as stream:
                    content = (await stream.read()).decode("utf-8")
        except (BotoCoreError, ClientError) as e:
            raise BackupStoreError(f"Failed to read restore marker for partition {partition_id.hex}") from e

        try:
            backup_id = UUID(content.strip())
        except ValueError as e:
            raise StoreCorruptionError(
                f"Restore marker for partition {partition_id.hex} holds an invalid backup id: {content!r}"
            ) from e

        matches = await self.get_backup_metadata(backup_id=backup_id)
        if len(matches) != 1:
            raise StoreCorruptionError(
                f"Restore marker for partition {partition_id.hex} references backup {backup_id.hex}, "
                f"found {len(matches)} metadata records"
            )

        try:
            async with self._client() as s3:
                await self._call(s3.delete_object, Bucket=self.bucket, Key=queue_key)
        except (BotoCoreError, ClientError) as e:
            raise BackupStoreError(f"Failed to delete restore marker for partition {partition_id.hex}") from e

        logger.info(f"Consumed restore marker for partition {partition_id.hex}: backup {backup_id.hex}")
        return matches[0]

    async def delete_bucket(self) -> None:
        """Delete every object and then the bucket itself."""
        async with self._client() as s3:
            try:
                async for page in self._iter_pages(s3, Prefix=""):
                    for obj in page.get("Contents", []):
                        await self._call(s3.delete_object, Bucket=self.bucket, Key=obj["Key"])
                await self._call(s3.delete_bucket, Bucket=self.bucket)
            except ClientError as e:
                if _error_code(e) != "NoSuchBucket":
                    raise
        self._initialized = False
        logger.info(f"Deleted bucket {self.bucket}")

    async def _get_backup_records(
        self,
        backup_id: Optional[UUID] = None,
        partition_id: Optional[UUID] = None,
    ) -> List[BlobBackupRecord]:
        backup_id = as_uuid(backup_id, "backup_id") if backup_id is not None else None
        partition_id = as_uuid(partition_id, "partition_id") if partition_id is not None else None

        # Sidecars live below their partition prefix
        prefix = f"{ROOT_FOLDER}/{partition_id.hex}/" if partition_id is not None else f"{ROOT_FOLDER}/"

        records = []
        try:
            await self._ensure_initialized()
            async with self._client() as s3:
                async for page in self._iter_pages(s3, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        key = obj["Key"]
                        if not key.endswith(f"/{METADATA_FILE_NAME}"):
                            continue
                        metadata = await self._read_metadata(s3, key)
                        if metadata is None:
                            continue
                        if backup_id is not None and metadata.backup_id != backup_id:
                            continue
                        if partition_id is not None and metadata.original_partition_id != partition_id:
                            continue
                        records.append(BlobBackupRecord(key.rsplit("/", 1)[0], metadata))
        except (BotoCoreError, ClientError) as e:
            raise BackupStoreError(f"Failed to list backups in bucket {self.bucket}") from e

        return records

    async def _read_metadata(self, s3, key: str) -> Optional[BackupMetadata]:
        """Build metadata from the object's tags, reading the body only if tags are missing."""
        head = await self._call(s3.head_object, Bucket=self.bucket, Key=key)
        tags = {k.lower(): v for k, v in head.get("Metadata", {}).items()}

        try:
            if all(t.lower() in tags for t in (TAG_BACKUP_ID, TAG_BACKUP_OPTION, TAG_PARTITION_ID, TAG_TIMESTAMP)):
                return BackupMetadata(
                    backup_id=UUID(tags[TAG_BACKUP_ID.lower()]),
                    original_partition_id=UUID(tags[TAG_PARTITION_ID.lower()]),
                    timestamp_utc=_parse_timestamp(tags[TAG_TIMESTAMP.lower()]),
                    backup_option=tags[TAG_BACKUP_OPTION.lower()],
                )

            response = await self._call(s3.get_object, Bucket=self.bucket, Key=key)
            async with response["Body"] as stream:
                return BackupMetadata.from_json(await stream.read())
        except (ValidationError, ValueError) as e:
            logger.warning(f"Skipping unreadable backup metadata s3://{self.bucket}/{key}: {e}")
            return None

    async def _iter_pages(self, s3, **kwargs) -> AsyncIterator[Dict[str, Any]]:
        """Yield list_objects_v2 pages, following continuation tokens."""
        token = None
        while True:
            params = {"Bucket": self.bucket, "MaxKeys": self.page_size, **kwargs}
            if token:
                params["ContinuationToken"] = token
            page = await self._call(s3.list_objects_v2, **params)
            yield page
            if not page.get("IsTruncated"):
                return
            token = page.get("NextContinuationToken")

    async def _prefix_exists(self, s3, prefix: str) -> bool:
        page = await self._call(s3.list_objects_v2, Bucket=self.bucket, Prefix=f"{prefix}/", MaxKeys=1)
        return bool(page.get("Contents"))

    async def _claim_prefix(self, s3, partition_id: UUID, timestamp: datetime) -> str:
        """Reserve a backup prefix no other upload can get.

        The reservation is a conditional put of ``<prefix>.claim``, so two
        uploads of one partition in the same second end up under different
        prefixes. Prefixes holding objects but no claim are skipped as well.
        """
        base = self.create_datetime_folder_name(partition_id, timestamp)
        candidate, attempt = base, 0
        while True:
            try:
                await self._call(
                    s3.put_object,
                    Bucket=self.bucket,
                    Key=f"{candidate}{CLAIM_SUFFIX}",
                    Body=b"",
                    IfNoneMatch="*",
                )
                if not await self._prefix_exists(s3, candidate):
                    return candidate
            except ClientError as e:
                if _error_code(e) not in _CLAIM_TAKEN_CODES:
                    raise
            attempt += 1
            candidate = f"{base}_{attempt}"

    async def _upload_folder(self, s3, source_folder: Path, prefix: str) -> None:
        directories, files = await asyncio.to_thread(list_folder, source_folder)

        for directory in directories:
            await self._upload_folder(s3, directory, f"{prefix}/{directory.name}")

        for source_file in files:
            key = f"{prefix}/{source_file.name}"
            await self._call(s3.upload_file, Filename=str(source_file), Bucket=self.bucket, Key=key)
            logger.debug(f"Uploaded {source_file} -> s3://{self.bucket}/{key}")

    async def _download_folder(self, s3, prefix: str, destination: Path, top_level: bool = False) -> None:
        await asyncio.to_thread(destination.mkdir, parents=True, exist_ok=True)

        async for page in self._iter_pages(s3, Prefix=f"{prefix}/", Delimiter="/"):
            for common_prefix in page.get("CommonPrefixes", []):
                sub_prefix = common_prefix["Prefix"].rstrip("/")
                await self._download_folder(s3, sub_prefix, destination / sub_prefix.rsplit("/", 1)[-1])

            for obj in page.get("Contents", []):
                name = obj["Key"][len(prefix) + 1:]
                if not name or (top_level and name in RESERVED_FILE_NAMES):
                    continue
                await self._call(
                    s3.download_file,
                    Bucket=self.bucket,
                    Key=obj["Key"],
                    Filename=str(destination / name),
                )
                logger.debug(f"Downloaded s3://{self.bucket}/{obj['Key']} -> {destination / name}")

    def _queue_key(self, partition_id: UUID) -> str:
        return f"{ROOT_FOLDER}/{QUEUE_FOLDER_NAME}/{partition_id.hex}"
