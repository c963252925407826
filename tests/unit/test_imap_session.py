"""
Test the imaplib-backed session and session factory.
"""
import imaplib
from unittest.mock import MagicMock

import pytest

from courrier.domain.entities import Account, Server
from courrier.domain.errors import AuthError, ImapConnectionError, ProtocolError
from courrier.infrastructure.email.imap import ImapAccountSession, ImapSessionFactory


def ok_conn():
    conn = MagicMock()
    conn.login.return_value = ("OK", [b"LOGIN completed"])
    return conn


def gmail_account():
    return Account(
        email="bob@gmail.com",
        username="bob@gmail.com",
        password="app-password",
        server=Server(host="imap.gmail.com"),
    )


class TestImapSessionFactory:
    """Test connection, retry and login handling"""

    def test_connect_success(self, account):
        conn = ok_conn()
        imap_class = MagicMock(return_value=conn)
        factory = ImapSessionFactory(imap_class=imap_class, connect_timeout=5.0)

        session = factory.connect(account)

        assert isinstance(session, ImapAccountSession)
        assert session.account == account
        imap_class.assert_called_once_with("imap.example.com", 993, timeout=5.0)
        conn.login.assert_called_once_with("alice", "secret")

    def test_network_failure_retried_with_backoff(self, account):
        sleeps = []
        imap_class = MagicMock(side_effect=OSError("connection refused"))
        factory = ImapSessionFactory(imap_class=imap_class, attempts=3, backoff_seconds=1.0, sleep=sleeps.append)

        with pytest.raises(ImapConnectionError):
            factory.connect(account)

        assert imap_class.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_recovers_on_retry(self, account):
        conn = ok_conn()
        imap_class = MagicMock(side_effect=[TimeoutError("timed out"), conn])
        factory = ImapSessionFactory(imap_class=imap_class, sleep=lambda _: None)

        session = factory.connect(account)

        assert session.account == account
        assert imap_class.call_count == 2

    def test_auth_failure_not_retried(self, account):
        conn = MagicMock()
        conn.login.side_effect = imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        imap_class = MagicMock(return_value=conn)
        sleeps = []
        factory = ImapSessionFactory(imap_class=imap_class, sleep=sleeps.append)

        with pytest.raises(AuthError) as exc:
            factory.connect(account)

        assert "AUTHENTICATIONFAILED" in str(exc.value)
        assert imap_class.call_count == 1
        assert sleeps == []

    def test_abort_during_login_is_connection_error(self, account):
        conn = MagicMock()
        conn.login.side_effect = imaplib.IMAP4.abort("socket error: EOF")
        factory = ImapSessionFactory(imap_class=MagicMock(return_value=conn), attempts=1)

        with pytest.raises(ImapConnectionError):
            factory.connect(account)

    def test_gmail_falls_back_to_local_part(self):
        rejected = MagicMock()
        rejected.login.side_effect = imaplib.IMAP4.error("Invalid credentials")
        accepted = ok_conn()
        imap_class = MagicMock(side_effect=[rejected, accepted])
        factory = ImapSessionFactory(imap_class=imap_class)

        factory.connect(gmail_account())

        rejected.login.assert_called_once_with("bob@gmail.com", "app-password")
        accepted.login.assert_called_once_with("bob", "app-password")

    def test_gmail_hint_when_both_forms_rejected(self):
        conns = [MagicMock(), MagicMock()]
        for conn in conns:
            conn.login.side_effect = imaplib.IMAP4.error("Invalid credentials")
        factory = ImapSessionFactory(imap_class=MagicMock(side_effect=conns))

        with pytest.raises(AuthError) as exc:
            factory.connect(gmail_account())

        assert "app-specific password" in str(exc.value)

    def test_login_candidates(self, account):
        assert account.login_candidates == ["alice"]
        assert gmail_account().login_candidates == ["bob@gmail.com", "bob"]


class TestImapAccountSession:
    """Test IMAP command mapping"""

    def make_session(self, account, conn=None):
        conn = conn or MagicMock()
        return ImapAccountSession(account, conn, operation_timeout=30.0), conn

    def test_operation_timeout_applied(self, account):
        session, conn = self.make_session(account)

        conn.sock.settimeout.assert_called_once_with(30.0)

    def test_list_mailboxes(self, account):
        session, conn = self.make_session(account)
        conn.list.return_value = ("OK", [b'(\\HasNoChildren) "/" "INBOX"', b'(\\HasNoChildren) "/" "Sent"'])

        entries = session.list_mailboxes()

        assert [e.name for e in entries] == ["INBOX", "Sent"]

    def test_select_reads_uidvalidity(self, account):
        session, conn = self.make_session(account)
        conn.select.return_value = ("OK", [b"3"])
        conn.response.return_value = ("UIDVALIDITY", [b"1000"])

        selected = session.select("INBOX")

        conn.select.assert_called_once_with('"INBOX"', readonly=True)
        assert selected.uidvalidity == 1000
        assert selected.exists == 3
        assert session.selected == "INBOX"

    def test_select_falls_back_to_status(self, account):
        session, conn = self.make_session(account)
        conn.select.return_value = ("OK", [b"0"])
        conn.response.return_value = ("UIDVALIDITY", [None])
        conn.status.return_value = ("OK", [b'"INBOX" (UIDVALIDITY 42)'])

        assert session.select("INBOX").uidvalidity == 42

    def test_select_without_uidvalidity_is_protocol_error(self, account):
        session, conn = self.make_session(account)
        conn.select.return_value = ("OK", [b"0"])
        conn.response.return_value = ("UIDVALIDITY", [None])
        conn.status.return_value = ("OK", [b'"INBOX" (MESSAGES 0)'])

        with pytest.raises(ProtocolError):
            session.select("INBOX")

    def test_select_no_is_protocol_error(self, account):
        session, conn = self.make_session(account)
        conn.select.return_value = ("NO", [b"Mailbox doesn't exist"])

        with pytest.raises(ProtocolError):
            session.select("Missing")

    def test_search_uids(self, account):
        session, conn = self.make_session(account)
        conn.uid.return_value = ("OK", [b"1 2 10"])

        assert session.search_uids() == [1, 2, 10]
        conn.uid.assert_called_once_with("SEARCH", None, "ALL")

    def test_abort_is_connection_error(self, account):
        session, conn = self.make_session(account)
        conn.uid.side_effect = imaplib.IMAP4.abort("socket error")

        with pytest.raises(ImapConnectionError):
            session.search_uids()

    def test_socket_timeout_is_connection_error(self, account):
        session, conn = self.make_session(account)
        conn.uid.side_effect = TimeoutError("timed out")

        with pytest.raises(ImapConnectionError):
            session.search_uids()

    def test_fetch_message_with_peek(self, account):
        session, conn = self.make_session(account)
        conn.uid.return_value = ("OK", [(b"1 (UID 5 BODY[] {5}", b"hello"), b")"])

        assert session.fetch_message(5) == b"hello"
        conn.uid.assert_called_once_with("FETCH", "5", "(BODY.PEEK[])")

    def test_fetch_message_falls_back_to_rfc822(self, account):
        session, conn = self.make_session(account)
        conn.uid.side_effect = [
            ("OK", [None]),
            ("OK", [(b"1 (UID 5 RFC822 {3}", b"abc"), b")"]),
        ]

        assert session.fetch_message(5) == b"abc"
        assert conn.uid.call_args_list[1].args == ("FETCH", "5", "(RFC822)")

    def test_fetch_message_without_body_is_protocol_error(self, account):
        session, conn = self.make_session(account)
        conn.uid.return_value = ("OK", [None])

        with pytest.raises(ProtocolError):
            session.fetch_message(5)

    def test_unselect_closes_mailbox(self, account):
        session, conn = self.make_session(account)
        conn.select.return_value = ("OK", [b"1"])
        conn.response.return_value = ("UIDVALIDITY", [b"7"])
        conn.close.return_value = ("OK", [b"CLOSE completed"])
        session.select("INBOX")

        session.unselect()

        conn.close.assert_called_once()
        assert session.selected is None

    def test_close_logs_out_once(self, account):
        session, conn = self.make_session(account)
        conn.logout.side_effect = OSError("already gone")

        session.close()
        session.close()

        conn.logout.assert_called_once()
        with pytest.raises(ImapConnectionError):
            session.search_uids()
