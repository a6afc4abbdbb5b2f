"""
Outcome schemas - per-unit status and the run report.

UnitOutcome tracks the terminal state of a single unit within a run.
RunReport collects the outcomes of every unit considered by a run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# ULID type alias for documentation
ULID = str


class UnitStatus(str, Enum):
    """Status of a unit within a run."""
    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitStatus.SKIPPED, UnitStatus.SUCCEEDED, UnitStatus.FAILED)

    @property
    def is_satisfied(self) -> bool:
        """Whether dependents may read this unit's address."""
        return self in (UnitStatus.SKIPPED, UnitStatus.SUCCEEDED)


@dataclass(frozen=True)
class UnitOutcome:
    """
    The outcome of a single unit within a run.

    Attributes:
        unit_name: Name of the unit
        status: pending, running, skipped, succeeded or failed
        action: "deploy" or "call"
        started_at: When the action started (None if pending/skipped)
        completed_at: When the action finished (None if pending/running)
        address: Deployed (or called) contract address, if any
        transaction_hash: Transaction submitted by this run, if any
        error: Error details if status is failed ({"type", "kind", "message"})
    """
    unit_name: str
    status: UnitStatus
    action: str = "deploy"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    address: Optional[str] = None
    transaction_hash: Optional[str] = None
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        # Validate status-dependent fields
        if self.status == UnitStatus.PENDING:
            if self.started_at is not None or self.completed_at is not None:
                raise ValueError("Pending units should not have started_at or completed_at")
        elif self.status == UnitStatus.RUNNING:
            if self.started_at is None:
                raise ValueError("Running units must have started_at")
            if self.completed_at is not None:
                raise ValueError("Running units should not have completed_at")
        elif self.status in (UnitStatus.SUCCEEDED, UnitStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} units must have started_at and completed_at")
        if self.status == UnitStatus.FAILED and not self.error:
            raise ValueError("Failed units must carry error details")

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "unit_name": self.unit_name,
            "status": self.status.value,
            "action": self.action,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.address is not None:
            result["address"] = self.address
        if self.transaction_hash is not None:
            result["transaction_hash"] = self.transaction_hash
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnitOutcome":
        """Deserialize from dictionary."""
        return cls(
            unit_name=data["unit_name"],
            status=UnitStatus(data["status"]),
            action=data.get("action", "deploy"),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            address=data.get("address"),
            transaction_hash=data.get("transaction_hash"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RunReport:
    """
    Report of a single deployment run against one network.

    Partial success (some succeeded, one failed, the rest pending) is a
    normal outcome, not a crash.

    Attributes:
        run_id: ULID of the run
        network: Target network identifier
        started_at: When the run started
        completed_at: When the run finished
        outcomes: One outcome per unit, in execution order
        aborted: True if the operator interrupted the run
    """
    run_id: ULID
    network: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: tuple[UnitOutcome, ...] = field(default_factory=tuple)
    aborted: bool = False

    def get_outcome(self, unit_name: str) -> Optional[UnitOutcome]:
        """Get the outcome for a specific unit."""
        for outcome in self.outcomes:
            if outcome.unit_name == unit_name:
                return outcome
        return None

    def _with_status(self, status: UnitStatus) -> tuple[UnitOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == status)

    @property
    def failed_units(self) -> tuple[UnitOutcome, ...]:
        return self._with_status(UnitStatus.FAILED)

    @property
    def pending_units(self) -> tuple[UnitOutcome, ...]:
        return self._with_status(UnitStatus.PENDING)

    @property
    def succeeded_units(self) -> tuple[UnitOutcome, ...]:
        return self._with_status(UnitStatus.SUCCEEDED)

    @property
    def skipped_units(self) -> tuple[UnitOutcome, ...]:
        return self._with_status(UnitStatus.SKIPPED)

    @property
    def success(self) -> bool:
        """True when every unit either succeeded or was skipped."""
        return all(o.status.is_satisfied for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def counts(self) -> dict[str, int]:
        """Unit counts by status."""
        stats = {"total": len(self.outcomes)}
        for status in UnitStatus:
            stats[status.value] = 0
        for outcome in self.outcomes:
            stats[outcome.status.value] += 1
        return stats

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate run duration in milliseconds if completed."""
        if self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "network": self.network,
            "started_at": self.started_at.isoformat(),
            "success": self.success,
            "aborted": self.aborted,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunReport":
        """Deserialize from dictionary."""
        return cls(
            run_id=data["run_id"],
            network=data["network"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            outcomes=tuple(UnitOutcome.from_dict(o) for o in data.get("outcomes", [])),
            aborted=data.get("aborted", False),
        )
