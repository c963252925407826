from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Protocol

from courrier.domain.entities import Account

@dataclass(frozen=True)
class ListEntry:
    # One parsed LIST response line
    flags: tuple[str, ...]
    delimiter: Optional[str]
    name: str

@dataclass(frozen=True)
class SelectedMailbox:
    path: str
    uidvalidity: int
    exists: int

class MailSession(Protocol):
    """An authenticated connection to one account. Not safe for concurrent use."""

    account: Account

    def list_mailboxes(self) -> list[ListEntry]: ...
    def select(self, path: str) -> SelectedMailbox: ...
    def search_uids(self) -> list[int]: ...
    def fetch_message(self, uid: int) -> bytes: ...
    def unselect(self) -> None: ...
    def close(self) -> None: ...

class SessionFactory(Protocol):
    def connect(self, account: Account) -> MailSession: ...
