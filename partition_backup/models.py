"""Data models for backup metadata."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BackupOption(str, Enum):
    """Kind of backup. A restore chain always starts with a FULL backup."""

    FULL = "Full"
    INCREMENTAL = "Incremental"


_OPTION_CODES = {0: BackupOption.FULL, 1: BackupOption.INCREMENTAL}


class BackupMetadata(BaseModel):
    """Immutable description of one stored backup.

    Two records are equal when they describe the same backup id.
    Field aliases match the JSON sidecar stored next to each payload.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    backup_id: UUID = Field(default_factory=uuid4, alias="BackupId")
    original_partition_id: UUID = Field(..., alias="OriginalServicePartitionId")
    timestamp_utc: datetime = Field(..., alias="TimeStampUtc")
    backup_option: BackupOption = Field(..., alias="BackupOption")

    @field_validator("backup_option", mode="before")
    @classmethod
    def _parse_option(cls, value: Any) -> Any:
        # Sidecars written by other tools carry the enum as 0/1 or in any casing
        if isinstance(value, BackupOption):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if value not in _OPTION_CODES:
                raise ValueError(f"Unknown backup option code: {value}")
            return _OPTION_CODES[value]
        if isinstance(value, str):
            for option in BackupOption:
                if value.strip().lower() in (option.value.lower(), option.name.lower()):
                    return option
            raise ValueError(f"Unknown backup option: {value}")
        return value

    @field_validator("timestamp_utc")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def create(
        cls,
        partition_id: UUID,
        backup_option: BackupOption,
        timestamp_utc: Optional[datetime] = None,
    ) -> "BackupMetadata":
        """Create metadata for a new backup with a fresh backup id."""
        return cls(
            original_partition_id=partition_id,
            timestamp_utc=timestamp_utc or datetime.now(timezone.utc),
            backup_option=backup_option,
        )

    @property
    def is_full(self) -> bool:
        return self.backup_option == BackupOption.FULL

    def to_json(self) -> str:
        """Serialize to the sidecar JSON document."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "BackupMetadata":
        return cls.model_validate_json(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BackupMetadata):
            return NotImplemented
        return self.backup_id == other.backup_id

    def __hash__(self) -> int:
        return hash(self.backup_id)
