"""Domain models and entities."""

from courrier.domain.entities import Account, Mailbox, MessageRecord, Server
from courrier.domain.models import (
    FetchRun,
    RunStatus,
    UnitOutcome,
    UnitStatus,
)

__all__ = [
    "Account",
    "Server",
    "Mailbox",
    "MessageRecord",
    "FetchRun",
    "RunStatus",
    "UnitOutcome",
    "UnitStatus",
]
