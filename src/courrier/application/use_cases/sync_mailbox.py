"""Incremental fetch of one mailbox."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from courrier.application.ports.mail_session import MailSession
from courrier.application.ports.message_storage import MessageStorage
from courrier.application.ports.tracking_store import TrackingStore
from courrier.domain.entities import Mailbox, MessageRecord
from courrier.domain.errors import (
    CourrierError,
    ImapConnectionError,
    ProtocolError,
    StorageError,
    TrackingStoreError,
)
from courrier.domain.models import UnitOutcome, UnitStatus, utcnow

ProgressCallback = Callable[[UnitOutcome], None]


class IncrementalFetcher:
    """Fetch the messages of one mailbox that are not yet recorded locally.

    Flow:
    1. EXAMINE the mailbox and read its UIDVALIDITY
    2. UID SEARCH ALL for the server's current UID set
    3. Compare against the tracking store (a UIDVALIDITY change means
       nothing recorded under the old value counts)
    4. For each missing UID, ascending: fetch, write the .eml, then insert
       the record. The record is never inserted before the file is in place.

    A failed message is counted and skipped, so the next run retries it.
    Losing the connection ends the mailbox with ``error_kind="connection"``;
    tracking store failures propagate to the caller with the partial outcome
    attached.
    """

    def __init__(
        self,
        store: TrackingStore,
        storage: MessageStorage,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.storage = storage
        self._clock = clock

    def sync(
        self,
        session: MailSession,
        mailbox: Mailbox,
        cancel: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> UnitOutcome:
        outcome = UnitOutcome(
            account=mailbox.account,
            mailbox=mailbox.path,
            status=UnitStatus.RUNNING,
            started_at=self._clock(),
        )

        if cancel is not None and cancel.is_set():
            return self._finish(outcome, UnitStatus.CANCELLED)

        try:
            selected = session.select(mailbox.path)
        except ProtocolError as e:
            logger.error(f"Cannot open {mailbox.account}/{mailbox.path}: {e}")
            return self._fail(outcome, e, "protocol")
        except ImapConnectionError as e:
            logger.error(f"Connection lost opening {mailbox.account}/{mailbox.path}: {e}")
            return self._fail(outcome, e, "connection")

        outcome.uidvalidity = selected.uidvalidity
        try:
            with self.store.mailbox_writer(mailbox.account, mailbox.path):
                self._sync_selected(session, mailbox, selected.uidvalidity, outcome, cancel, progress)
        except ProtocolError as e:
            logger.error(f"UID SEARCH failed for {mailbox.account}/{mailbox.path}: {e}")
            self._fail(outcome, e, "protocol")
        except ImapConnectionError as e:
            logger.error(
                f"Connection lost during {mailbox.account}/{mailbox.path} "
                f"after {outcome.fetched} message(s): {e}"
            )
            self._fail(outcome, e, "connection")
        except TrackingStoreError as e:
            logger.error(
                f"Tracking store failed during {mailbox.account}/{mailbox.path} "
                f"after {outcome.fetched} message(s): {e}"
            )
            e.outcome = self._fail(outcome, e, "store")
            raise
        finally:
            if outcome.error_kind != "connection":
                self._unselect(session, mailbox)

        if outcome.status == UnitStatus.RUNNING:
            self._finish(outcome, UnitStatus.COMPLETED)

        logger.info(
            f"{mailbox.account}/{mailbox.path}: {outcome.status.value} "
            f"(fetched={outcome.fetched}, skipped={outcome.skipped}, failed={outcome.failed})"
        )
        return outcome

    def _sync_selected(
        self,
        session: MailSession,
        mailbox: Mailbox,
        uidvalidity: int,
        outcome: UnitOutcome,
        cancel: Optional[threading.Event],
        progress: Optional[ProgressCallback],
    ) -> None:
        account, path = mailbox.account, mailbox.path

        known_validity = self.store.highest_known_uidvalidity(account, path)
        if known_validity is not None and known_validity != uidvalidity:
            logger.warning(
                f"UIDVALIDITY changed for {account}/{path} "
                f"({known_validity} -> {uidvalidity}); refetching every message"
            )
        self.store.record_mailbox(mailbox, uidvalidity)

        server_uids = session.search_uids()
        # Records under the current UIDVALIDITY are the only ones that count
        known = self.store.all_uids(account, path, uidvalidity)
        missing = sorted(set(server_uids) - known)
        outcome.skipped = len(server_uids) - len(missing)

        hint = self.store.checkpoint(account, path, uidvalidity)
        logger.debug(
            f"{account}/{path}: {len(server_uids)} on server, {len(missing)} to fetch "
            f"(uidvalidity={uidvalidity}, highest recorded uid={hint})"
        )

        for uid in missing:
            if cancel is not None and cancel.is_set():
                logger.info(f"Cancelled {account}/{path} before UID {uid}")
                self._finish(outcome, UnitStatus.CANCELLED)
                return

            try:
                raw = session.fetch_message(uid)
            except ProtocolError as e:
                self._skip_message(outcome, uid, mailbox, e, "protocol")
                continue

            try:
                stored = self.storage.write(mailbox, uid, raw)
            except StorageError as e:
                self._skip_message(outcome, uid, mailbox, e, "storage")
                continue

            self.store.insert(
                MessageRecord(
                    account=account,
                    mailbox=path,
                    uid=uid,
                    uidvalidity=uidvalidity,
                    storage_path=str(stored),
                    fetched_at=self._clock(),
                    size_bytes=len(raw),
                )
            )
            outcome.fetched += 1
            if progress is not None:
                progress(outcome.model_copy())

    def _skip_message(
        self, outcome: UnitOutcome, uid: int, mailbox: Mailbox, error: Exception, kind: str
    ) -> None:
        outcome.failed += 1
        outcome.last_error = f"UID {uid}: {error}"
        outcome.error_kind = kind
        logger.warning(f"Skipping UID {uid} in {mailbox.account}/{mailbox.path}: {error}")

    def _unselect(self, session: MailSession, mailbox: Mailbox) -> None:
        try:
            session.unselect()
        except CourrierError as e:
            logger.warning(f"CLOSE failed for {mailbox.account}/{mailbox.path}: {e}")

    def _fail(self, outcome: UnitOutcome, error: Exception, kind: str) -> UnitOutcome:
        outcome.last_error = str(error)
        outcome.error_kind = kind
        return self._finish(outcome, UnitStatus.FAILED)

    def _finish(self, outcome: UnitOutcome, status: UnitStatus) -> UnitOutcome:
        outcome.status = status
        outcome.ended_at = self._clock()
        return outcome
