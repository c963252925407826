"""Command line entry point: one-shot fetch, API server, and storage stats."""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path
from typing import Optional, Sequence

import uvicorn
from loguru import logger

from courrier.domain.errors import ConfigError, TrackingStoreError
from courrier.domain.models import FetchRun, RunStatus
from courrier.infrastructure import configure_logging, get_settings
from courrier.infrastructure.engine import Engine, build_engine


def _human_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TB"


async def _fetch_once(engine: Engine) -> FetchRun:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.coordinator.cancel)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still interrupts
            logger.debug(f"Signal handler for {sig!r} not supported on this platform")
    handle = engine.coordinator.trigger()
    return await handle.wait()


def cmd_fetch(engine: Engine) -> int:
    run = asyncio.run(_fetch_once(engine))
    counts = run.aggregate_counts()

    print(f"Run {run.id}: {run.status.value}")
    print(f"  fetched={counts['fetched']} skipped={counts['skipped']} failed={counts['failed']}")
    for unit in sorted(run.units.values(), key=lambda u: u.key):
        if unit.has_errors:
            print(f"  ! {unit.key}: {unit.status.value} ({unit.last_error})")
    if run.error:
        print(f"  error: {run.error}")

    if run.status == RunStatus.FAILED:
        return 1
    if run.status == RunStatus.CANCELLED:
        return 130
    return 0


def cmd_serve(engine: Engine, host: Optional[str], port: Optional[int]) -> int:
    from courrier.api.main import create_app

    settings = engine.settings
    uvicorn.run(
        create_app(engine),
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def cmd_stats(engine: Engine) -> int:
    stats = engine.reporter.stats()
    print(f"Total: {stats['total_messages']} messages, {_human_size(stats['total_size_bytes'])}")
    for account in stats["accounts"]:
        print(
            f"{account['account']}: {account['messages']} messages in "
            f"{account['mailboxes']} mailbox(es), {_human_size(account['size_bytes'])}, "
            f"last fetch {account['last_fetch'] or 'never'}"
        )
    for row in stats["mailboxes"]:
        print(f"  {row['account']}/{row['mailbox']}: {row['messages']} ({_human_size(row['size_bytes'])})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="courrier", description="Incremental IMAP fetcher")
    parser.add_argument("--config", default=None, help="Mail config TOML (default: COURRIER_CONFIG_PATH)")
    parser.add_argument("--log-level", default=None, help="Override COURRIER_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("fetch", help="Run one fetch over all accounts and exit")
    serve = sub.add_parser("serve", help="Run the status API with the periodic scheduler")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    sub.add_parser("stats", help="Print stored message statistics")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    updates = {}
    if args.config:
        updates["config_path"] = Path(args.config)
    if args.log_level:
        updates["log_level"] = args.log_level
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings.log_level)

    try:
        engine = build_engine(settings)
    except ConfigError as e:
        logger.error(str(e))
        return 2
    except TrackingStoreError as e:
        logger.error(f"Tracking database unavailable: {e}")
        return 1

    if args.command == "fetch":
        return cmd_fetch(engine)
    if args.command == "serve":
        return cmd_serve(engine, args.host, args.port)
    return cmd_stats(engine)


if __name__ == "__main__":
    raise SystemExit(main())
