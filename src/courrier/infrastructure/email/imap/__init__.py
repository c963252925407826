"""imaplib-backed account sessions."""

from courrier.infrastructure.email.imap.auth import ImapSessionFactory
from courrier.infrastructure.email.imap.session import ImapAccountSession

__all__ = [
    "ImapSessionFactory",
    "ImapAccountSession",
]
