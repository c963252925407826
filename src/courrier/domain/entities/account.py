from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_IMAP_PORT = 993


@dataclass(frozen=True)
class Server:
    host: str
    port: int = DEFAULT_IMAP_PORT
    max_connections: Optional[int] = None  # per-server session cap, None = global default

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Account:
    """
    One configured mailbox owner. Identity is the email address.
    """
    email: str
    username: str
    password: str = field(repr=False)
    server: Server

    @property
    def login_candidates(self) -> list[str]:
        """Usernames to try, in order.

        Gmail rejects some full-address logins that succeed with the local
        part, so for imap.gmail.com the local part is tried second.
        """
        names = [self.username]
        if self.server.host == "imap.gmail.com" and "@" in self.username:
            names.append(self.username.split("@")[0])
        return names
