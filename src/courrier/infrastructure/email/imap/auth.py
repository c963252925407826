from __future__ import annotations
import imaplib
import ssl
import time
from typing import Callable, Optional

from loguru import logger

from courrier.domain.entities import Account
from courrier.domain.errors import AuthError, ImapConnectionError
from courrier.infrastructure.email.imap.session import ImapAccountSession

GMAIL_HELP = (
    "Gmail: ensure IMAP is enabled and use an app-specific password "
    "(https://myaccount.google.com/apppasswords)."
)


class ImapSessionFactory:
    """
    Responsible ONLY for establishing an authenticated IMAP connection.
    No folder logic, no fetching.

    Network failures are retried with exponential backoff up to
    ``attempts``; a rejected login is raised immediately as AuthError.
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        operation_timeout: Optional[float] = 60.0,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        imap_class: Callable[..., imaplib.IMAP4] = imaplib.IMAP4_SSL,
        ssl_context: Optional[ssl.SSLContext] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.imap_class = imap_class
        self.ssl_context = ssl_context
        self._sleep = sleep

    def connect(self, account: Account) -> ImapAccountSession:
        last_error: Optional[ImapConnectionError] = None
        for attempt in range(self.attempts):
            try:
                return self._login(account)
            except ImapConnectionError as e:
                last_error = e
                if attempt + 1 < self.attempts:
                    delay = self.backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"Connection to {account.server.key} failed for {account.email} "
                        f"(attempt {attempt + 1}/{self.attempts}): {e}; retrying in {delay:.1f}s"
                    )
                    self._sleep(delay)
        raise ImapConnectionError(
            f"Could not connect to {account.server.key} after {self.attempts} attempts: {last_error}"
        )

    def _open(self, account: Account) -> imaplib.IMAP4:
        host, port = account.server.host, account.server.port
        logger.debug(f"Connecting to {host}:{port}")
        try:
            if self.imap_class is imaplib.IMAP4_SSL:
                return imaplib.IMAP4_SSL(
                    host, port, ssl_context=self.ssl_context, timeout=self.connect_timeout
                )
            return self.imap_class(host, port, timeout=self.connect_timeout)
        except (OSError, imaplib.IMAP4.abort) as e:
            raise ImapConnectionError(f"{host}:{port}: {e}") from e
        except imaplib.IMAP4.error as e:
            # greeting was BYE or garbage
            raise ImapConnectionError(f"{host}:{port} refused session: {e}") from e

    def _login(self, account: Account) -> ImapAccountSession:
        rejections: list[str] = []
        for username in account.login_candidates:
            conn = self._open(account)
            try:
                conn.login(username, account.password)
            except imaplib.IMAP4.abort as e:
                raise ImapConnectionError(f"Connection dropped during login: {e}") from e
            except imaplib.IMAP4.error as e:
                rejections.append(f"{username!r}: {e}")
                self._discard(conn)
                if len(account.login_candidates) > 1:
                    logger.info(f"Login as {username!r} rejected for {account.email}, trying next username form")
                continue
            except OSError as e:
                self._discard(conn)
                raise ImapConnectionError(f"Login to {account.server.key} failed: {e}") from e

            logger.info(f"Logged in as {account.email} (username: {username}) on {account.server.key}")
            return ImapAccountSession(account, conn, operation_timeout=self.operation_timeout)

        message = f"Login failed for {account.email}: " + "; ".join(rejections)
        if account.server.host == "imap.gmail.com":
            message += f". {GMAIL_HELP}"
        raise AuthError(message)

    @staticmethod
    def _discard(conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"Logout after rejected login failed: {e}")
