from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
import time

REPORT_COLUMNS: tuple[str, ...] = (
    "NAMESPACE",
    "PVC",
    "PV",
    "CAP",
    "SC",
    "VOLUME_ID",
    "VTYPE",
    "NODE_ID",
    "STATUS",
    "CAP%",
    "IND%",
    "AM",
    "RC",
    "AGE",
)

OUTCOME_SUCCESS = "success"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class VolumeRecord:
    name: str
    volume_id: str
    storage_class: str | None
    reclaim_policy: str | None


@dataclass(frozen=True)
class ClaimRecord:
    namespace: str
    name: str
    capacity: str | None
    storage_class: str | None
    volume_name: str | None
    access_modes: tuple[str, ...]
    phase: str | None
    created_at: datetime | None


@dataclass(frozen=True)
class NodeRecord:
    name: str
    provider_id: str


@dataclass(frozen=True)
class PodAttachment:
    namespace: str
    node_name: str
    claim_names: tuple[str, ...]


@dataclass
class UsageAggregate:
    used_bytes: float = 0.0
    capacity_bytes: float = 0.0
    inodes_used: float = 0.0
    inodes_total: float = 0.0


@dataclass(frozen=True)
class ReportRow:
    namespace: str
    claim: str
    volume: str
    capacity: str
    storage_class: str
    volume_id: str
    volume_type: str
    node_ids: str
    status: str
    capacity_used_percent: str
    inode_used_percent: str
    access_modes: str
    reclaim_policy: str
    age: str

    def as_columns(self) -> tuple[str, ...]:
        return tuple(asdict(self).values())

    def as_dict(self) -> dict[str, str]:
        return dict(zip(REPORT_COLUMNS, self.as_columns(), strict=True))


@dataclass(frozen=True)
class SourceOutcome:
    source: str
    status: str
    reason: str = ""


@dataclass(frozen=True)
class InventoryReport:
    rows: tuple[ReportRow, ...]
    outcomes: tuple[SourceOutcome, ...]

    @property
    def degraded(self) -> bool:
        return any(outcome.status != OUTCOME_SUCCESS for outcome in self.outcomes)

    def degraded_outcomes(self) -> list[SourceOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status != OUTCOME_SUCCESS]


@dataclass(frozen=True)
class Deadline:
    """Monotonic-clock budget shared by every read in one inventory pass."""

    expires_at: float | None

    @classmethod
    def after(cls, seconds: float | None) -> Deadline:
        if seconds is None:
            return cls(expires_at=None)
        return cls(expires_at=time.monotonic() + seconds)

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def request_timeout(self, timeout_seconds: float) -> float:
        """Per-request timeout capped by what is left of the pass.

        Raises ``DeadlineExceeded`` instead of returning a non-positive value,
        which the Kubernetes client would treat as "no timeout".
        """
        if self.expires_at is None:
            return timeout_seconds
        remaining = self.expires_at - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded("pass deadline exceeded")
        return min(timeout_seconds, remaining)


class DeadlineExceeded(RuntimeError):
    """Raised when a read would start after the pass deadline."""
