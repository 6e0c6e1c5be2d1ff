"""Data models, all frozen (immutable)."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Iterable

RECORD_FIELDS: tuple[str, ...] = (
    "token",
    "size",
    "net_value",
    "collateral",
    "entry_price",
    "mark_price",
    "liquidation_price",
)


@dataclass(frozen=True)
class PositionRecord:
    """Single observed row of a positions table. Values are kept as shown on the page."""

    token: str
    size: str = ""
    net_value: str = ""
    collateral: str = ""
    entry_price: str = ""
    mark_price: str = ""
    liquidation_price: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositionRecord:
        """Build a record, ignoring unknown keys and defaulting missing ones to ""."""
        known = {f.name for f in fields(cls)}
        values = {k: str(v) for k, v in data.items() if k in known and v is not None}
        values.setdefault("token", "")
        return cls(**values)


# Ordered records for one target. None from a store means "absent".
Snapshot = tuple[PositionRecord, ...]


@dataclass(frozen=True)
class Target:
    """One monitored page, identified by its URL."""

    url: str
    display_name: str = ""
    description: str = ""
    rating: str = ""
    timeout_ms: int | None = None

    @property
    def key(self) -> str:
        return self.url


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class ChangeReason:
    """One detected difference between a snapshot and a fresh poll."""

    kind: ChangeKind
    subject_key: str
    record: PositionRecord
    previous: PositionRecord | None = None
    delta_percent: float | None = None


@dataclass(frozen=True)
class ChangeResult:
    reasons: tuple[ChangeReason, ...] = ()

    @property
    def changed(self) -> bool:
        return len(self.reasons) > 0

    def of_kind(self, kind: ChangeKind) -> tuple[ChangeReason, ...]:
        return tuple(r for r in self.reasons if r.kind is kind)


class PollStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    FAILURE = "failure"


@dataclass(frozen=True)
class PollOutcome:
    """Result of polling one target in one cycle, after retries."""

    status: PollStatus
    records: Snapshot | None = None

    @classmethod
    def from_records(cls, records: Iterable[PositionRecord]) -> PollOutcome:
        snapshot = tuple(records)
        status = PollStatus.SUCCESS if snapshot else PollStatus.EMPTY
        return cls(status=status, records=snapshot)

    @classmethod
    def failure(cls) -> PollOutcome:
        return cls(status=PollStatus.FAILURE, records=None)


class TargetEvent(str, Enum):
    """What one cycle did for one target."""

    BOOTSTRAPPED = "bootstrapped"
    PENDING = "pending"
    FIRST_OBSERVATION = "first_observation"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    CLOSED = "closed"
    NO_OP = "no_op"
    ERROR = "error"
