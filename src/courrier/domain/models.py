"""Run-state models for Courrier."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    """Overall status of a fetch run."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UnitStatus(str, Enum):
    """Status of one (account, mailbox) work unit."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UnitOutcome(BaseModel):
    """Outcome of one work unit.

    ``mailbox`` is None for account-level steps (connect, login, discovery).
    """

    account: str
    mailbox: str | None = None
    status: UnitStatus = UnitStatus.PENDING
    uidvalidity: int | None = None
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    last_error: str | None = None
    error_kind: str | None = None  # connection, auth, protocol, storage, store, internal
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.account}/{self.mailbox or ''}"

    @property
    def has_errors(self) -> bool:
        return self.status == UnitStatus.FAILED or self.failed > 0


class FetchRun(BaseModel):
    """A single fetch cycle across all configured accounts."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    status: RunStatus = RunStatus.RUNNING
    units: dict[str, UnitOutcome] = Field(default_factory=dict)
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RunStatus.RUNNING

    def aggregate_counts(self) -> dict[str, Any]:
        units = list(self.units.values())
        return {
            "fetched": sum(u.fetched for u in units),
            "skipped": sum(u.skipped for u in units),
            "failed": sum(u.failed for u in units),
            "units_total": len(units),
            "units_done": sum(
                1 for u in units
                if u.status not in (UnitStatus.PENDING, UnitStatus.RUNNING)
            ),
            "units_failed": sum(1 for u in units if u.status == UnitStatus.FAILED),
        }
