"""
Shared fixtures: a temporary tracking store, a message store, and a test account.
"""
from pathlib import Path

import pytest

from courrier.domain.entities import Account, Mailbox
from courrier.infrastructure.sqlite import SQLiteTrackingStore
from courrier.infrastructure.storage import EmlFileStore, EmlStoreConfig

from tests.fakes import make_account


@pytest.fixture
def store(tmp_path: Path) -> SQLiteTrackingStore:
    return SQLiteTrackingStore(tmp_path / "tracking.db")


@pytest.fixture
def storage(tmp_path: Path) -> EmlFileStore:
    return EmlFileStore(EmlStoreConfig(root=tmp_path / "emails", fsync=False))


@pytest.fixture
def account() -> Account:
    return make_account("alice@example.com")


@pytest.fixture
def inbox(account: Account) -> Mailbox:
    return Mailbox(account=account.email, path="INBOX", delimiter="/")
