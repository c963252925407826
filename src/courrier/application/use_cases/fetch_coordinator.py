"""Run fetches across every configured account under bounded concurrency."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from loguru import logger

from courrier.application.ports.mail_session import MailSession, SessionFactory
from courrier.application.ports.tracking_store import TrackingStore
from courrier.application.use_cases.discover_mailboxes import MailboxDiscoverer
from courrier.application.use_cases.sync_mailbox import IncrementalFetcher
from courrier.domain.entities import Account, Mailbox, Server
from courrier.domain.errors import AuthError, ImapConnectionError, ProtocolError, TrackingStoreError
from courrier.domain.models import FetchRun, RunStatus, UnitOutcome, UnitStatus, utcnow


class RunHandle:
    """Handle returned by ``FetchCoordinator.trigger``."""

    def __init__(self, run_id: str, task: asyncio.Task, coordinator: "FetchCoordinator") -> None:
        self.run_id = run_id
        self._task = task
        self._coordinator = coordinator

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> FetchRun:
        """Wait for the run to finish and return its final state."""
        await asyncio.shield(self._task)
        return self._task.result()

    def cancel(self) -> bool:
        return self._coordinator.cancel(self.run_id)


class _Slots:
    """Session slots for one run: one global semaphore plus one per server."""

    def __init__(self, global_limit: int, server_limit: Optional[int]) -> None:
        self._global = asyncio.Semaphore(global_limit)
        self._server_limit = server_limit
        self._servers: dict[str, asyncio.Semaphore] = {}

    def _for_server(self, server: Server) -> Optional[asyncio.Semaphore]:
        limit = server.max_connections or self._server_limit
        if not limit:
            return None
        if server.key not in self._servers:
            self._servers[server.key] = asyncio.Semaphore(limit)
        return self._servers[server.key]

    @asynccontextmanager
    async def hold(self, server: Server) -> AsyncIterator[None]:
        per_server = self._for_server(server)
        if per_server is None:
            async with self._global:
                yield
            return
        async with per_server:
            async with self._global:
                yield


class FetchCoordinator:
    """Single-flight fetch runs over all accounts.

    Each account is worked by up to ``sessions_per_account`` lanes. A lane
    owns one IMAP session and holds a global slot and a per-server slot for
    as long as that session is open. The first lane connects and discovers
    mailboxes; every lane then takes mailboxes from the account's queue.
    Blocking IMAP, disk and SQLite work runs in worker threads.

    Failures stay inside the smallest unit they affect: a message, a
    mailbox, or an account. A tracking store failure fails the whole run.
    """

    def __init__(
        self,
        accounts: Sequence[Account],
        session_factory: SessionFactory,
        discoverer: MailboxDiscoverer,
        fetcher: IncrementalFetcher,
        store: TrackingStore,
        max_concurrent_sessions: int = 4,
        max_sessions_per_server: Optional[int] = None,
        sessions_per_account: int = 1,
    ) -> None:
        if max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be at least 1")
        self.accounts = list(accounts)
        self.session_factory = session_factory
        self.discoverer = discoverer
        self.fetcher = fetcher
        self.store = store
        self.max_concurrent_sessions = max_concurrent_sessions
        self.max_sessions_per_server = max_sessions_per_server
        self.sessions_per_account = max(1, sessions_per_account)

        self._run: Optional[FetchRun] = None
        self._handle: Optional[RunHandle] = None
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # public surface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._run is not None and self._run.is_active

    def trigger(self) -> RunHandle:
        """Start a run, or return the handle of the run already in progress.

        Must be called from the event loop thread.
        """
        if self.is_running and self._handle is not None:
            logger.info(f"Fetch run {self._handle.run_id} already in progress")
            return self._handle

        loop = asyncio.get_running_loop()
        run = FetchRun()
        for account in self.accounts:
            unit = UnitOutcome(account=account.email)
            run.units[unit.key] = unit
        cancel = threading.Event()

        self._run = run
        self._cancel = cancel
        task = loop.create_task(self._execute(run, cancel), name=f"fetch-run-{run.id}")
        self._handle = RunHandle(run.id, task, self)
        logger.info(f"Fetch run {run.id} started for {len(self.accounts)} account(s)")
        return self._handle

    def status(self) -> Optional[FetchRun]:
        """Snapshot of the current or most recent run from this process."""
        if self._run is None:
            return None
        return self._run.model_copy(deep=True)

    @property
    def last_run(self) -> Optional[FetchRun]:
        """The most recent finalized run, if any."""
        run = self.status()
        if run is None or run.is_active:
            return None
        return run

    def cancel(self, run_id: Optional[str] = None) -> bool:
        """Ask the active run to stop. Returns False when there is nothing to cancel."""
        if not self.is_running or self._run is None:
            return False
        if run_id is not None and run_id != self._run.id:
            return False
        if not self._cancel.is_set():
            logger.info(f"Cancelling fetch run {self._run.id}")
            self._cancel.set()
        return True

    async def shutdown(self) -> None:
        """Cancel any active run and wait for its workers to wind down."""
        handle = self._handle
        if handle is None or handle.done:
            return
        self.cancel()
        await handle.wait()

    # ------------------------------------------------------------------
    # run execution
    # ------------------------------------------------------------------

    async def _execute(self, run: FetchRun, cancel: threading.Event) -> FetchRun:
        slots = _Slots(self.max_concurrent_sessions, self.max_sessions_per_server)
        try:
            results = await asyncio.gather(
                *(self._run_account(run, account, cancel, slots) for account in self.accounts),
                return_exceptions=True,
            )
            for account, result in zip(self.accounts, results):
                if isinstance(result, Exception):
                    logger.opt(exception=result).error(f"Account worker for {account.email} crashed")
                    unit = run.units[UnitOutcome(account=account.email).key]
                    if unit.status != UnitStatus.FAILED:
                        self._fail_unit(unit, result, "internal")
        except asyncio.CancelledError:
            cancel.set()
            raise
        finally:
            await self._finalize(run, cancel)
        return run

    async def _run_account(
        self, run: FetchRun, account: Account, cancel: threading.Event, slots: _Slots
    ) -> None:
        helpers: list[asyncio.Task] = []
        try:
            await self._primary_lane(run, account, cancel, slots, helpers)
        finally:
            # Joined after the primary slot is released, so helpers waiting
            # for a slot can still get one
            if helpers:
                await asyncio.gather(*helpers, return_exceptions=True)

    async def _primary_lane(
        self,
        run: FetchRun,
        account: Account,
        cancel: threading.Event,
        slots: _Slots,
        helpers: list[asyncio.Task],
    ) -> None:
        unit = run.units[UnitOutcome(account=account.email).key]
        queue: deque[Mailbox] = deque()

        async with slots.hold(account.server):
            if cancel.is_set():
                return
            unit.status = UnitStatus.RUNNING
            unit.started_at = utcnow()

            try:
                session = await asyncio.to_thread(self.session_factory.connect, account)
            except AuthError as e:
                logger.error(f"Authentication failed for {account.email}: {e}")
                self._fail_unit(unit, e, "auth")
                return
            except ImapConnectionError as e:
                logger.error(f"Cannot connect {account.email}: {e}")
                self._fail_unit(unit, e, "connection")
                return

            try:
                mailboxes = await asyncio.to_thread(self.discoverer.discover, session)
            except (ProtocolError, ImapConnectionError) as e:
                logger.error(f"Mailbox discovery failed for {account.email}: {e}")
                self._fail_unit(unit, e, "protocol" if isinstance(e, ProtocolError) else "connection")
                await asyncio.to_thread(session.close)
                return

            unit.status = UnitStatus.COMPLETED
            unit.ended_at = utcnow()
            for mailbox in mailboxes:
                mailbox_unit = UnitOutcome(account=account.email, mailbox=mailbox.path)
                run.units[mailbox_unit.key] = mailbox_unit
                queue.append(mailbox)

            extra = min(self.sessions_per_account - 1, len(mailboxes) - 1)
            helpers.extend(
                asyncio.create_task(self._extra_lane(run, account, queue, cancel, slots))
                for _ in range(max(0, extra))
            )
            await self._lane(run, account, session, queue, cancel)

    async def _extra_lane(
        self,
        run: FetchRun,
        account: Account,
        queue: deque[Mailbox],
        cancel: threading.Event,
        slots: _Slots,
    ) -> None:
        async with slots.hold(account.server):
            if not queue or cancel.is_set():
                return
            try:
                session = await asyncio.to_thread(self.session_factory.connect, account)
            except (AuthError, ImapConnectionError) as e:
                # The primary lane keeps draining the queue
                logger.warning(f"Extra session for {account.email} unavailable: {e}")
                return
            await self._lane(run, account, session, queue, cancel)

    async def _lane(
        self,
        run: FetchRun,
        account: Account,
        session: Optional[MailSession],
        queue: deque[Mailbox],
        cancel: threading.Event,
    ) -> None:
        loop = asyncio.get_running_loop()

        def progress(snapshot: UnitOutcome) -> None:
            loop.call_soon_threadsafe(self._apply_progress, run, snapshot)

        try:
            while queue and not cancel.is_set():
                mailbox = queue.popleft()
                unit = run.units[UnitOutcome(account=account.email, mailbox=mailbox.path).key]
                unit.status = UnitStatus.RUNNING
                unit.started_at = utcnow()

                if session is None:
                    try:
                        session = await asyncio.to_thread(self.session_factory.connect, account)
                    except (AuthError, ImapConnectionError) as e:
                        logger.error(f"Reconnect failed for {account.email}: {e}")
                        kind = "auth" if isinstance(e, AuthError) else "connection"
                        self._fail_unit(unit, e, kind)
                        while queue:
                            pending = queue.popleft()
                            self._fail_unit(
                                run.units[UnitOutcome(account=account.email, mailbox=pending.path).key],
                                e,
                                kind,
                            )
                        return

                try:
                    outcome = await asyncio.to_thread(self.fetcher.sync, session, mailbox, cancel, progress)
                except TrackingStoreError as e:
                    logger.error(f"Tracking store failure during {unit.key}: {e}")
                    if e.outcome is not None:
                        run.units[unit.key] = e.outcome
                    else:
                        self._fail_unit(unit, e, "store")
                    run.error = f"Tracking store failure: {e}"
                    cancel.set()
                    return
                except Exception as e:
                    logger.exception(f"Unexpected error while fetching {unit.key}")
                    self._fail_unit(unit, e, "internal")
                    continue

                run.units[unit.key] = outcome
                if outcome.error_kind == "connection":
                    await asyncio.to_thread(session.close)
                    session = None
        finally:
            if session is not None:
                await asyncio.to_thread(session.close)

    @staticmethod
    def _apply_progress(run: FetchRun, snapshot: UnitOutcome) -> None:
        unit = run.units.get(snapshot.key)
        if unit is None or unit.status != UnitStatus.RUNNING:
            return
        unit.uidvalidity = snapshot.uidvalidity
        unit.fetched = snapshot.fetched
        unit.skipped = snapshot.skipped
        unit.failed = snapshot.failed
        unit.last_error = snapshot.last_error

    @staticmethod
    def _fail_unit(unit: UnitOutcome, error: Exception, kind: str) -> None:
        unit.status = UnitStatus.FAILED
        unit.last_error = str(error)
        unit.error_kind = kind
        unit.ended_at = utcnow()

    async def _finalize(self, run: FetchRun, cancel: threading.Event) -> None:
        now = utcnow()
        for unit in run.units.values():
            if unit.status in (UnitStatus.PENDING, UnitStatus.RUNNING):
                unit.status = UnitStatus.CANCELLED
                unit.ended_at = now

        if run.error is not None:
            run.status = RunStatus.FAILED
        elif cancel.is_set():
            run.status = RunStatus.CANCELLED
        elif any(unit.has_errors for unit in run.units.values()):
            run.status = RunStatus.COMPLETED_WITH_ERRORS
        else:
            run.status = RunStatus.COMPLETED
        run.ended_at = now

        try:
            await asyncio.to_thread(self.store.save_run, run.model_copy(deep=True))
        except TrackingStoreError as e:
            logger.error(f"Could not save fetch run {run.id}: {e}")
            run.error = run.error or f"Could not save run history: {e}"
            run.status = RunStatus.FAILED

        counts = run.aggregate_counts()
        logger.info(
            f"Fetch run {run.id} {run.status.value}: fetched={counts['fetched']} "
            f"skipped={counts['skipped']} failed={counts['failed']} "
            f"units_failed={counts['units_failed']}/{counts['units_total']}"
        )
