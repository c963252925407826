"""Read-only projections of run state and tracking statistics."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

from courrier.application.ports.tracking_store import TrackingStore
from courrier.application.use_cases.fetch_coordinator import FetchCoordinator
from courrier.domain.entities import Account
from courrier.domain.models import FetchRun


class StatusReporter:
    """Answers status queries without touching fetch work.

    ``snapshot`` reads the coordinator's in-memory run; when this process
    has not run a fetch yet it falls back to the latest persisted run.
    """

    def __init__(
        self,
        coordinator: FetchCoordinator,
        store: TrackingStore,
        accounts: Sequence[Account],
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self.accounts_config = list(accounts)

    def snapshot(self) -> dict[str, Any]:
        run: Optional[FetchRun] = self.coordinator.status()
        if run is None:
            run = self.store.latest_run()
        return self._describe(run)

    async def snapshot_async(self) -> dict[str, Any]:
        """``snapshot`` for the event loop: the run history read goes to a worker thread."""
        run: Optional[FetchRun] = self.coordinator.status()
        if run is None:
            run = await asyncio.to_thread(self.store.latest_run)
        return self._describe(run)

    @staticmethod
    def _describe(run: Optional[FetchRun]) -> dict[str, Any]:
        if run is None:
            return {
                "run_id": None,
                "status": "idle",
                "is_running": False,
                "started_at": None,
                "ended_at": None,
                "error": None,
                "per_unit": [],
                "aggregate_counts": FetchRun().aggregate_counts(),
            }

        units = sorted(run.units.values(), key=lambda u: (u.account, u.mailbox or ""))
        return {
            "run_id": run.id,
            "status": run.status.value,
            "is_running": run.is_active,
            "started_at": run.started_at.isoformat(),
            "ended_at": run.ended_at.isoformat() if run.ended_at else None,
            "error": run.error,
            "per_unit": [u.model_dump(mode="json") for u in units],
            "aggregate_counts": run.aggregate_counts(),
        }

    def accounts(self) -> list[dict[str, Any]]:
        """Configured servers with their accounts. Credentials are never included."""
        servers: dict[str, dict[str, Any]] = {}
        for account in self.accounts_config:
            server = servers.setdefault(
                account.server.key,
                {"host": account.server.host, "port": account.server.port, "accounts": []},
            )
            server["accounts"].append({"email": account.email, "username": account.username})
        return list(servers.values())

    def stats(self) -> dict[str, Any]:
        messages, size_bytes = self.store.totals()
        return {
            "total_messages": messages,
            "total_size_bytes": size_bytes,
            "accounts": [self.store.stats(a.email) for a in self.accounts_config],
            "mailboxes": self.store.mailbox_stats(),
        }
