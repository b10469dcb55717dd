"""
Statistics snapshot entity.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from stats_snapshots.exceptions import (
    ExpiredSnapshotError,
    InvalidSnapshotTypeError,
    ValidationError,
)
from stats_snapshots.models.period import Period


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotType(str, Enum):
    """Kinds of statistics snapshot."""
    OVERVIEW = "overview"
    POSTS = "posts"
    USERS = "users"
    POPULAR = "popular"

    @property
    def required_key(self) -> str:
        """Key a snapshot of this type must carry to pass integrity checks."""
        return _REQUIRED_KEYS[self]

    @classmethod
    def parse_many(cls, values: Iterable[Union["SnapshotType", str]]) -> list["SnapshotType"]:
        """
        Convert strings to snapshot types, keeping order and dropping repeats.

        Raises:
            InvalidSnapshotTypeError: naming every unknown value
        """
        valid = {t.value: t for t in cls}
        parsed: list[SnapshotType] = []
        invalid: list[str] = []
        for value in values:
            key = value.value if isinstance(value, cls) else str(value).strip().lower()
            if key not in valid:
                invalid.append(str(value))
            elif valid[key] not in parsed:
                parsed.append(valid[key])
        if invalid:
            raise InvalidSnapshotTypeError(invalid)
        return parsed


_REQUIRED_KEYS = {
    SnapshotType.OVERVIEW: "total_posts",
    SnapshotType.POSTS: "by_status",
    SnapshotType.USERS: "active_users",
    SnapshotType.POPULAR: "top_posts",
}


class StatisticsSnapshot(BaseModel):
    """One computed statistics result for a (snapshot_type, period) pair."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    snapshot_type: SnapshotType
    period: Period
    statistics_data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_expiry(self) -> "StatisticsSnapshot":
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValidationError("Snapshot expiry must be later than its creation time")
        return self

    @classmethod
    def create(
        cls,
        snapshot_type: Union[SnapshotType, str],
        period: Period,
        statistics_data: dict[str, Any],
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "StatisticsSnapshot":
        created = now or utcnow()
        return cls(
            snapshot_type=SnapshotType(snapshot_type),
            period=period,
            statistics_data=dict(statistics_data),
            metadata=dict(metadata or {}),
            created_at=created,
            updated_at=created,
            expires_at=expires_at,
        )

    # =========================================================================
    # STATE
    # =========================================================================

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def validate_data_integrity(self) -> bool:
        """Data must be non-empty and carry the key required by its type."""
        if not self.statistics_data:
            return False
        return self.snapshot_type.required_key in self.statistics_data

    def is_type(self, snapshot_type: Union[SnapshotType, str]) -> bool:
        return self.snapshot_type == SnapshotType(snapshot_type)

    # =========================================================================
    # MUTATION (only while not expired)
    # =========================================================================

    def update_statistics(self, data: dict[str, Any], now: Optional[datetime] = None) -> None:
        """Merge ``data`` into the statistics payload."""
        now = now or utcnow()
        if self.is_expired(now):
            raise ExpiredSnapshotError(self.id)
        self.statistics_data = {**self.statistics_data, **data}
        self.updated_at = now

    def update_metadata(self, metadata: dict[str, Any], now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        if self.is_expired(now):
            raise ExpiredSnapshotError(self.id)
        self.metadata = {**self.metadata, **metadata}
        self.updated_at = now

    def set_expires_at(self, expires_at: Optional[datetime]) -> None:
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= self.created_at:
                raise ValidationError("Snapshot expiry must be later than its creation time")
        self.expires_at = expires_at

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_statistic(self, key: str, default: Any = None) -> Any:
        return self.statistics_data.get(key, default)

    def has_statistic(self, key: str) -> bool:
        return key in self.statistics_data

    @property
    def total_count(self) -> int:
        try:
            return int(self.statistics_data.get("total_count", 0) or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def growth_rate(self) -> Optional[float]:
        trends = self.statistics_data.get("trends")
        if isinstance(trends, dict) and trends.get("growth_rate") is not None:
            return float(trends["growth_rate"])
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_type": self.snapshot_type.value,
            "period": self.period.to_dict(),
            "statistics_data": self.statistics_data,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatisticsSnapshot":
        return cls(
            id=data["id"],
            snapshot_type=data["snapshot_type"],
            period=Period.from_dict(data["period"]),
            statistics_data=data.get("statistics_data") or {},
            metadata=data.get("metadata") or {},
            created_at=data["created_at"],
            updated_at=data.get("updated_at") or data["created_at"],
            expires_at=data.get("expires_at"),
        )
