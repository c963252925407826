from __future__ import annotations
import imaplib
import re
from typing import Any, Callable, Optional

from loguru import logger

from courrier.application.ports.mail_session import ListEntry, SelectedMailbox
from courrier.domain.entities import Account
from courrier.domain.errors import ImapConnectionError, ProtocolError
from courrier.infrastructure.email.imap.parsing import (
    extract_message_body,
    parse_list_response,
    parse_uid_search,
    quote_mailbox,
)

_STATUS_UIDVALIDITY_RE = re.compile(rb"UIDVALIDITY\s+(\d+)", re.IGNORECASE)


class ImapAccountSession:
    """One authenticated imaplib connection for one account.

    Mailboxes are opened read-only (EXAMINE), so ``unselect`` never expunges.
    """

    def __init__(self, account: Account, conn: imaplib.IMAP4, operation_timeout: Optional[float] = None) -> None:
        self.account = account
        self._conn: Optional[imaplib.IMAP4] = conn
        self._selected: Optional[str] = None
        if operation_timeout is not None and getattr(conn, "sock", None) is not None:
            conn.sock.settimeout(operation_timeout)

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    def _command(self, what: str, fn: Callable[..., tuple[str, list[Any]]], *args: Any) -> list[Any]:
        if self._conn is None:
            raise ImapConnectionError(f"{what}: session for {self.account.email} is closed")
        try:
            typ, data = fn(*args)
        except imaplib.IMAP4.abort as e:
            raise ImapConnectionError(f"{what}: connection lost: {e}") from e
        except imaplib.IMAP4.error as e:
            raise ProtocolError(f"{what} failed: {e}") from e
        except OSError as e:
            # socket timeouts land here too
            raise ImapConnectionError(f"{what}: {e}") from e
        if typ != "OK":
            raise ProtocolError(f"{what} returned {typ}: {data!r}")
        return data

    def list_mailboxes(self) -> list[ListEntry]:
        conn = self._conn
        data = self._command("LIST", lambda: conn.list('""', "*"))
        return parse_list_response(data)

    def select(self, path: str) -> SelectedMailbox:
        conn = self._conn
        quoted = quote_mailbox(path)
        data = self._command(f"EXAMINE {path}", lambda: conn.select(quoted, readonly=True))
        exists = int(data[0]) if data and data[0] else 0
        self._selected = path

        _, codes = conn.response("UIDVALIDITY")
        uidvalidity: Optional[int] = None
        if codes and codes[0]:
            uidvalidity = int(codes[0])
        else:
            status = self._command(f"STATUS {path}", lambda: conn.status(quoted, "(UIDVALIDITY)"))
            for line in status:
                m = _STATUS_UIDVALIDITY_RE.search(line or b"")
                if m:
                    uidvalidity = int(m.group(1))
        if uidvalidity is None:
            raise ProtocolError(f"Server reported no UIDVALIDITY for {path}")

        logger.debug(f"Selected {self.account.email}/{path} ({exists} messages, uidvalidity={uidvalidity})")
        return SelectedMailbox(path=path, uidvalidity=uidvalidity, exists=exists)

    def search_uids(self) -> list[int]:
        conn = self._conn
        data = self._command("UID SEARCH", lambda: conn.uid("SEARCH", None, "ALL"))
        return parse_uid_search(data)

    def fetch_message(self, uid: int) -> bytes:
        """Fetch the raw message. BODY.PEEK[] leaves \\Seen untouched; RFC822 is the fallback."""
        conn = self._conn
        try:
            data = self._command(f"UID FETCH {uid}", lambda: conn.uid("FETCH", str(uid), "(BODY.PEEK[])"))
            body = extract_message_body(data, uid)
            if body is not None:
                return body
        except ProtocolError as e:
            logger.debug(f"BODY.PEEK[] failed for UID {uid}, trying RFC822: {e}")

        data = self._command(f"UID FETCH {uid}", lambda: conn.uid("FETCH", str(uid), "(RFC822)"))
        body = extract_message_body(data, uid)
        if body is None:
            raise ProtocolError(f"No message body for UID {uid}: BODY.PEEK[] and RFC822 both returned nothing")
        return body

    def unselect(self) -> None:
        if self._selected is None or self._conn is None:
            return
        conn = self._conn
        try:
            self._command("CLOSE", conn.close)
        finally:
            self._selected = None

    def close(self) -> None:
        if self._conn:
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"Logout for {self.account.email} failed: {e}")
            self._conn = None
            self._selected = None
