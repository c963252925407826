"""Application layer - fetch orchestration and status reporting."""

from courrier.application.scheduler import Scheduler
from courrier.application.use_cases import (
    FetchCoordinator,
    IncrementalFetcher,
    MailboxDiscoverer,
    RunHandle,
    StatusReporter,
)

__all__ = [
    "FetchCoordinator",
    "IncrementalFetcher",
    "MailboxDiscoverer",
    "RunHandle",
    "Scheduler",
    "StatusReporter",
]
