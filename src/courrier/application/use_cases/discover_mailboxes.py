"""List the selectable mailboxes of an account."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Sequence

from loguru import logger

from courrier.application.ports.mail_session import ListEntry, MailSession
from courrier.domain.entities import Mailbox

# Flags (RFC 3501 / 5258) marking names that cannot be selected
UNSELECTABLE_FLAGS = frozenset({"\\noselect", "\\nonexistent"})


def normalize_path(name: str, delimiter: str | None) -> str:
    """Canonical form of a mailbox name.

    Drops empty hierarchy levels (``A//B`` and a trailing delimiter) and
    uppercases INBOX, which is case-insensitive on every server.
    """
    if delimiter:
        parts = [p for p in name.split(delimiter) if p]
        name = delimiter.join(parts) if parts else name
    if name.upper() == "INBOX":
        return "INBOX"
    return name


class MailboxDiscoverer:
    """Discover mailboxes for one account session.

    Flow:
    1. LIST "" "*" on the session (ProtocolError propagates, failing the account)
    2. Skip \\Noselect and \\NonExistent entries
    3. Normalize names and drop duplicates
    4. Keep names matching an include glob and no exclude glob
    5. Return INBOX first, then the rest in server order
    """

    def __init__(
        self,
        include: Sequence[str] = ("*",),
        exclude: Sequence[str] = (),
    ) -> None:
        self.include = list(include) or ["*"]
        self.exclude = list(exclude)

    def discover(self, session: MailSession) -> list[Mailbox]:
        account = session.account.email
        entries = session.list_mailboxes()
        mailboxes = self.select_entries(account, entries)
        logger.info(
            f"Discovered {len(mailboxes)} mailbox(es) for {account} "
            f"({len(entries)} listed)"
        )
        return mailboxes

    def select_entries(self, account: str, entries: Iterable[ListEntry]) -> list[Mailbox]:
        seen: set[str] = set()
        out: list[Mailbox] = []
        for entry in entries:
            if any(flag.lower() in UNSELECTABLE_FLAGS for flag in entry.flags):
                logger.debug(f"Skipping unselectable mailbox {entry.name!r} ({account})")
                continue

            path = normalize_path(entry.name, entry.delimiter)
            if path in seen:
                continue
            seen.add(path)

            if not self._wanted(path, entry.delimiter):
                logger.debug(f"Mailbox {path!r} filtered out ({account})")
                continue

            out.append(Mailbox(account=account, path=path, delimiter=entry.delimiter, flags=entry.flags))

        out.sort(key=lambda m: m.path != "INBOX")
        return out

    def _wanted(self, path: str, delimiter: str | None) -> bool:
        # Globs are written with "/" regardless of the server's delimiter
        candidate = path.replace(delimiter, "/") if delimiter and delimiter != "/" else path
        if not any(fnmatchcase(candidate, pattern) for pattern in self.include):
            return False
        return not any(fnmatchcase(candidate, pattern) for pattern in self.exclude)
