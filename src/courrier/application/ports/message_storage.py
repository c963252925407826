from __future__ import annotations
from pathlib import Path
from typing import Protocol
from courrier.domain.entities import Mailbox

class MessageStorage(Protocol):
    def path_for(self, mailbox: Mailbox, uid: int) -> Path: ...
    def write(self, mailbox: Mailbox, uid: int, raw: bytes) -> Path: ...
