from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

@dataclass(frozen=True)
class MessageRecord:
    # Unique per (account, mailbox, uid, uidvalidity). Never updated once committed.
    account: str
    mailbox: str
    uid: int
    uidvalidity: int
    storage_path: str
    fetched_at: datetime
    size_bytes: int = 0
