"""Builds the fetch engine from settings and the mail configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from courrier.application.scheduler import Scheduler
from courrier.application.use_cases import (
    FetchCoordinator,
    IncrementalFetcher,
    MailboxDiscoverer,
    StatusReporter,
)
from courrier.application.ports.mail_session import SessionFactory
from courrier.infrastructure.email.imap import ImapSessionFactory
from courrier.infrastructure.mail_config import MailConfig, load_mail_config
from courrier.infrastructure.settings import Settings, get_settings
from courrier.infrastructure.sqlite import SQLiteTrackingStore
from courrier.infrastructure.storage import EmlFileStore, eml_store_at


@dataclass
class Engine:
    """Everything a process needs to run and observe fetches."""

    settings: Settings
    mail_config: MailConfig
    store: SQLiteTrackingStore
    storage: EmlFileStore
    coordinator: FetchCoordinator
    reporter: StatusReporter
    scheduler: Scheduler


def build_engine(
    settings: Optional[Settings] = None,
    mail_config: Optional[MailConfig] = None,
    session_factory: Optional[SessionFactory] = None,
) -> Engine:
    """Wire the engine. Raises ConfigError when the mail config is missing or invalid."""
    settings = settings or get_settings()
    mail_config = mail_config or load_mail_config(settings.config_path)
    accounts = mail_config.accounts()

    store = SQLiteTrackingStore(settings.db_path)
    storage = eml_store_at(mail_config.email_storage_path)

    if session_factory is None:
        session_factory = ImapSessionFactory(
            connect_timeout=settings.connect_timeout,
            operation_timeout=settings.operation_timeout,
            attempts=settings.connect_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )

    coordinator = FetchCoordinator(
        accounts=accounts,
        session_factory=session_factory,
        discoverer=MailboxDiscoverer(settings.mailbox_include, settings.mailbox_exclude),
        fetcher=IncrementalFetcher(store, storage),
        store=store,
        max_concurrent_sessions=settings.max_concurrent_sessions,
        max_sessions_per_server=settings.max_sessions_per_server,
        sessions_per_account=settings.sessions_per_account,
    )
    scheduler = Scheduler(
        coordinator,
        interval_seconds=mail_config.fetch_interval_seconds,
        fetch_on_startup=mail_config.fetch_on_startup,
    )

    logger.info(
        f"Engine ready: {len(accounts)} account(s), storage at {storage.root}, "
        f"tracking db at {store.db_path}"
    )
    return Engine(
        settings=settings,
        mail_config=mail_config,
        store=store,
        storage=storage,
        coordinator=coordinator,
        reporter=StatusReporter(coordinator, store, accounts),
        scheduler=scheduler,
    )
