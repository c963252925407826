"""Ports implemented by the infrastructure layer."""

from courrier.application.ports.mail_session import (
    ListEntry,
    MailSession,
    SelectedMailbox,
    SessionFactory,
)
from courrier.application.ports.message_storage import MessageStorage
from courrier.application.ports.tracking_store import TrackingStore

__all__ = [
    "ListEntry",
    "MailSession",
    "SelectedMailbox",
    "SessionFactory",
    "MessageStorage",
    "TrackingStore",
]
