"""SQLite tracking store: the durable record of fetched messages."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from loguru import logger

from courrier.domain.entities import Mailbox, MessageRecord
from courrier.domain.errors import TrackingStoreError
from courrier.domain.models import FetchRun


class SQLiteTrackingStore:
    """Records which messages have been fetched, keyed per account + mailbox.

    Each operation opens its own connection, so the store can be shared by
    worker threads. WAL mode lets dashboard reads run alongside writes.
    Write access to one mailbox's records is serialized by ``mailbox_writer``.
    """

    def __init__(self, db_path: str | Path = "courrier.db"):
        self.db_path = Path(db_path)
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TrackingStoreError(f"Cannot create database directory: {e}") from e

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS mailboxes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    path TEXT NOT NULL,
                    delimiter TEXT,
                    uidvalidity INTEGER,
                    last_seen_at TEXT,

                    UNIQUE(account_id, path),
                    FOREIGN KEY(account_id) REFERENCES accounts(id)
                );

                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL,
                    mailbox_id INTEGER NOT NULL,
                    uid INTEGER NOT NULL,
                    uidvalidity INTEGER NOT NULL,
                    storage_path TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL DEFAULT 0,
                    fetched_at TEXT NOT NULL,

                    UNIQUE(account_id, mailbox_id, uid, uidvalidity),
                    FOREIGN KEY(account_id) REFERENCES accounts(id),
                    FOREIGN KEY(mailbox_id) REFERENCES mailboxes(id)
                );

                CREATE INDEX IF NOT EXISTS idx_messages_lookup
                    ON messages(mailbox_id, uidvalidity, uid);

                CREATE TABLE IF NOT EXISTS fetch_runs (
                    id TEXT PRIMARY KEY,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    status TEXT NOT NULL,
                    run_json TEXT NOT NULL
                );
            """)
        logger.info(f"Tracking database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise TrackingStoreError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise TrackingStoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # id helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _account_id(conn: sqlite3.Connection, email: str, create: bool = False) -> int | None:
        if create:
            # Concurrent lanes of one account may create the row at the same time
            conn.execute(
                "INSERT INTO accounts (email) VALUES (?) ON CONFLICT(email) DO NOTHING",
                (email,),
            )
        row = conn.execute("SELECT id FROM accounts WHERE email = ?", (email,)).fetchone()
        return row["id"] if row else None

    def _mailbox_id(
        self, conn: sqlite3.Connection, account: str, path: str, create: bool = False
    ) -> int | None:
        account_id = self._account_id(conn, account, create=create)
        if account_id is None:
            return None
        if create:
            conn.execute(
                """INSERT INTO mailboxes (account_id, path) VALUES (?, ?)
                   ON CONFLICT(account_id, path) DO NOTHING""",
                (account_id, path),
            )
        row = conn.execute(
            "SELECT id FROM mailboxes WHERE account_id = ? AND path = ?",
            (account_id, path),
        ).fetchone()
        return row["id"] if row else None

    # ------------------------------------------------------------------
    # write access
    # ------------------------------------------------------------------

    @contextmanager
    def mailbox_writer(self, account: str, mailbox: str) -> Generator[None, None, None]:
        """Hold exclusive write access to one mailbox's records."""
        with self._locks_guard:
            lock = self._locks.setdefault((account, mailbox), threading.Lock())
        with lock:
            yield

    def record_mailbox(self, mailbox: Mailbox, uidvalidity: int) -> None:
        """Remember the mailbox's delimiter and the UIDVALIDITY last seen on the server."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            mailbox_id = self._mailbox_id(conn, mailbox.account, mailbox.path, create=True)
            conn.execute(
                """UPDATE mailboxes SET delimiter = ?, uidvalidity = ?, last_seen_at = ?
                   WHERE id = ?""",
                (mailbox.delimiter, uidvalidity, now, mailbox_id),
            )

    def insert(self, record: MessageRecord) -> None:
        """Commit a fetched message. A record that already exists is left untouched."""
        with self._connection() as conn:
            account_id = self._account_id(conn, record.account, create=True)
            mailbox_id = self._mailbox_id(conn, record.account, record.mailbox, create=True)
            cursor = conn.execute(
                """INSERT INTO messages
                   (account_id, mailbox_id, uid, uidvalidity, storage_path, size_bytes, fetched_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(account_id, mailbox_id, uid, uidvalidity) DO NOTHING""",
                (
                    account_id,
                    mailbox_id,
                    record.uid,
                    record.uidvalidity,
                    record.storage_path,
                    record.size_bytes,
                    record.fetched_at.isoformat(),
                ),
            )
            if cursor.rowcount == 0:
                logger.debug(
                    f"Record already present: {record.account}/{record.mailbox} "
                    f"uid={record.uid} uidvalidity={record.uidvalidity}"
                )

    # ------------------------------------------------------------------
    # delta queries
    # ------------------------------------------------------------------

    def highest_known_uidvalidity(self, account: str, mailbox: str) -> int | None:
        with self._connection() as conn:
            mailbox_id = self._mailbox_id(conn, account, mailbox)
            if mailbox_id is None:
                return None
            row = conn.execute(
                """SELECT MAX(v) AS v FROM (
                       SELECT MAX(uidvalidity) AS v FROM messages WHERE mailbox_id = ?
                       UNION ALL
                       SELECT uidvalidity AS v FROM mailboxes WHERE id = ?
                   )""",
                (mailbox_id, mailbox_id),
            ).fetchone()
            return row["v"] if row else None

    def has_record(self, account: str, mailbox: str, uid: int, uidvalidity: int) -> bool:
        with self._connection() as conn:
            mailbox_id = self._mailbox_id(conn, account, mailbox)
            if mailbox_id is None:
                return False
            row = conn.execute(
                """SELECT 1 FROM messages
                   WHERE mailbox_id = ? AND uid = ? AND uidvalidity = ?
                   LIMIT 1""",
                (mailbox_id, uid, uidvalidity),
            ).fetchone()
            return row is not None

    def all_uids(self, account: str, mailbox: str, uidvalidity: int) -> set[int]:
        with self._connection() as conn:
            mailbox_id = self._mailbox_id(conn, account, mailbox)
            if mailbox_id is None:
                return set()
            rows = conn.execute(
                "SELECT uid FROM messages WHERE mailbox_id = ? AND uidvalidity = ?",
                (mailbox_id, uidvalidity),
            ).fetchall()
            return {row["uid"] for row in rows}

    def checkpoint(self, account: str, mailbox: str, uidvalidity: int) -> int | None:
        """Highest UID recorded under ``uidvalidity``. A hint, not a correctness boundary."""
        with self._connection() as conn:
            mailbox_id = self._mailbox_id(conn, account, mailbox)
            if mailbox_id is None:
                return None
            row = conn.execute(
                "SELECT MAX(uid) AS uid FROM messages WHERE mailbox_id = ? AND uidvalidity = ?",
                (mailbox_id, uidvalidity),
            ).fetchone()
            return row["uid"] if row else None

    # ------------------------------------------------------------------
    # statistics (read-only, used by the dashboard)
    # ------------------------------------------------------------------

    def stats(self, account: str) -> dict[str, Any]:
        """Message count, stored bytes and last fetch time for one account."""
        with self._connection() as conn:
            row = conn.execute(
                """SELECT COUNT(m.id) AS messages,
                          COALESCE(SUM(m.size_bytes), 0) AS size_bytes,
                          COUNT(DISTINCT m.mailbox_id) AS mailboxes,
                          MAX(m.fetched_at) AS last_fetch
                   FROM accounts a
                   LEFT JOIN messages m ON m.account_id = a.id
                   WHERE a.email = ?""",
                (account,),
            ).fetchone()

        return {
            "account": account,
            "messages": row["messages"] if row else 0,
            "size_bytes": row["size_bytes"] if row else 0,
            "mailboxes": row["mailboxes"] if row else 0,
            "last_fetch": row["last_fetch"] if row else None,
        }

    def mailbox_stats(self) -> list[dict[str, Any]]:
        """Per account/mailbox counts, ordered by account then mailbox."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT a.email AS account, mb.path AS mailbox,
                          COUNT(m.id) AS messages,
                          COALESCE(SUM(m.size_bytes), 0) AS size_bytes,
                          MAX(m.fetched_at) AS last_fetch
                   FROM mailboxes mb
                   JOIN accounts a ON a.id = mb.account_id
                   LEFT JOIN messages m ON m.mailbox_id = mb.id
                   GROUP BY mb.id
                   ORDER BY a.email, mb.path""",
            ).fetchall()
        return [dict(row) for row in rows]

    def totals(self) -> tuple[int, int]:
        """(message count, stored bytes) across all accounts."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(size_bytes), 0) AS size FROM messages"
            ).fetchone()
        return row["n"], row["size"]

    # ------------------------------------------------------------------
    # run history
    # ------------------------------------------------------------------

    def save_run(self, run: FetchRun) -> None:
        with self._connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO fetch_runs (id, started_at, ended_at, status, run_json)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    run.id,
                    run.started_at.isoformat(),
                    run.ended_at.isoformat() if run.ended_at else None,
                    run.status.value,
                    run.model_dump_json(),
                ),
            )

    def latest_run(self) -> FetchRun | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT run_json FROM fetch_runs ORDER BY started_at DESC LIMIT 1"
            ).fetchone()
        if not row:
            return None
        return FetchRun.model_validate_json(row["run_json"])
