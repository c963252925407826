"""
Test status reporting and the periodic scheduler.
"""
import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest

from courrier.application.scheduler import Scheduler
from courrier.application.use_cases import (
    FetchCoordinator,
    IncrementalFetcher,
    MailboxDiscoverer,
    StatusReporter,
)

from tests.fakes import FakeAccountData, FakeMailbox, FakeSessionFactory, make_account


@pytest.fixture
def accounts():
    return [
        make_account("alice@example.com"),
        make_account("bob@example.com"),
        make_account("carol@other.example.com", host="imap.other.example.com"),
    ]


@pytest.fixture
def engine_parts(store, storage, accounts):
    data = {a.email: FakeAccountData(mailboxes={"INBOX": FakeMailbox.with_uids(1000, [1, 2])}) for a in accounts}

    def make_coordinator():
        return FetchCoordinator(
            accounts=accounts,
            session_factory=FakeSessionFactory(data),
            discoverer=MailboxDiscoverer(),
            fetcher=IncrementalFetcher(store, storage),
            store=store,
        )

    return make_coordinator


class TestStatusReporter:
    def test_idle_snapshot(self, store, engine_parts, accounts):
        reporter = StatusReporter(engine_parts(), store, accounts)

        snapshot = reporter.snapshot()

        assert snapshot["status"] == "idle"
        assert snapshot["run_id"] is None
        assert snapshot["per_unit"] == []
        assert snapshot["aggregate_counts"]["fetched"] == 0

    @pytest.mark.asyncio
    async def test_snapshot_after_run(self, store, engine_parts, accounts):
        coordinator = engine_parts()
        reporter = StatusReporter(coordinator, store, accounts)

        run = await coordinator.trigger().wait()
        snapshot = reporter.snapshot()

        assert snapshot["run_id"] == run.id
        assert snapshot["status"] == "completed"
        assert snapshot["is_running"] is False
        assert snapshot["aggregate_counts"]["fetched"] == 6
        assert [u["mailbox"] for u in snapshot["per_unit"]][:2] == [None, "INBOX"]
        assert snapshot["per_unit"][1]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_falls_back_to_persisted_run(self, store, engine_parts, accounts):
        run = await engine_parts().trigger().wait()

        # a fresh process has no in-memory run
        reporter = StatusReporter(engine_parts(), store, accounts)

        assert reporter.snapshot()["run_id"] == run.id

    @pytest.mark.asyncio
    async def test_async_snapshot_reads_history_off_the_loop(self, store, engine_parts, accounts):
        run = await engine_parts().trigger().wait()
        reporter = StatusReporter(engine_parts(), store, accounts)
        readers = []
        latest_run = store.latest_run

        def recording_latest_run():
            readers.append(threading.get_ident())
            return latest_run()

        with patch.object(store, "latest_run", recording_latest_run):
            snapshot = await reporter.snapshot_async()

        assert snapshot["run_id"] == run.id
        assert readers and threading.get_ident() not in readers

    def test_accounts_grouped_by_server_without_passwords(self, store, engine_parts, accounts):
        reporter = StatusReporter(engine_parts(), store, accounts)

        servers = reporter.accounts()

        assert [s["host"] for s in servers] == ["imap.example.com", "imap.other.example.com"]
        assert [a["email"] for a in servers[0]["accounts"]] == ["alice@example.com", "bob@example.com"]
        assert "password" not in servers[0]["accounts"][0]

    @pytest.mark.asyncio
    async def test_stats(self, store, engine_parts, accounts):
        coordinator = engine_parts()
        await coordinator.trigger().wait()

        stats = StatusReporter(coordinator, store, accounts).stats()

        assert stats["total_messages"] == 6
        assert [a["messages"] for a in stats["accounts"]] == [2, 2, 2]
        assert len(stats["mailboxes"]) == 3


class TestScheduler:
    @pytest.mark.asyncio
    async def test_startup_fetch(self):
        coordinator = MagicMock()
        scheduler = Scheduler(coordinator, interval_seconds=None, fetch_on_startup=True)

        scheduler.start()
        await asyncio.sleep(0.01)

        coordinator.trigger.assert_called_once()
        assert not scheduler.running
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_no_startup_fetch(self):
        coordinator = MagicMock()
        scheduler = Scheduler(coordinator, interval_seconds=None, fetch_on_startup=False)

        scheduler.start()
        await asyncio.sleep(0.01)

        coordinator.trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_periodic_ticks(self):
        coordinator = MagicMock()
        scheduler = Scheduler(coordinator, interval_seconds=0.05, fetch_on_startup=False)

        scheduler.start()
        await asyncio.sleep(0.18)
        await scheduler.stop()

        assert coordinator.trigger.call_count >= 2
        assert scheduler.ticks == coordinator.trigger.call_count
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_leaves_active_run(self, engine_parts):
        coordinator = engine_parts()
        scheduler = Scheduler(coordinator, interval_seconds=60, fetch_on_startup=True)

        scheduler.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert coordinator.is_running
        await scheduler.stop()

        run = await coordinator.trigger().wait()
        assert run.status.value == "completed"
