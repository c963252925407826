"""Fetch use cases."""

from courrier.application.use_cases.discover_mailboxes import MailboxDiscoverer
from courrier.application.use_cases.fetch_coordinator import FetchCoordinator, RunHandle
from courrier.application.use_cases.status_reporter import StatusReporter
from courrier.application.use_cases.sync_mailbox import IncrementalFetcher

__all__ = [
    "FetchCoordinator",
    "IncrementalFetcher",
    "MailboxDiscoverer",
    "RunHandle",
    "StatusReporter",
]
