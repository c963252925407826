from __future__ import annotations
from contextlib import AbstractContextManager
from typing import Any, Optional, Protocol

from courrier.domain.entities import Mailbox, MessageRecord
from courrier.domain.models import FetchRun

class TrackingStore(Protocol):
    def highest_known_uidvalidity(self, account: str, mailbox: str) -> Optional[int]: ...
    def has_record(self, account: str, mailbox: str, uid: int, uidvalidity: int) -> bool: ...
    def all_uids(self, account: str, mailbox: str, uidvalidity: int) -> set[int]: ...
    def checkpoint(self, account: str, mailbox: str, uidvalidity: int) -> Optional[int]: ...
    def insert(self, record: MessageRecord) -> None: ...
    def record_mailbox(self, mailbox: Mailbox, uidvalidity: int) -> None: ...
    def mailbox_writer(self, account: str, mailbox: str) -> AbstractContextManager[None]: ...
    def stats(self, account: str) -> dict[str, Any]: ...
    def mailbox_stats(self) -> list[dict[str, Any]]: ...
    def totals(self) -> tuple[int, int]: ...
    def save_run(self, run: FetchRun) -> None: ...
    def latest_run(self) -> Optional[FetchRun]: ...
