"""Domain entities."""

from courrier.domain.entities.account import DEFAULT_IMAP_PORT, Account, Server
from courrier.domain.entities.mailbox import Mailbox
from courrier.domain.entities.message_record import MessageRecord

__all__ = [
    "DEFAULT_IMAP_PORT",
    "Account",
    "Server",
    "Mailbox",
    "MessageRecord",
]
