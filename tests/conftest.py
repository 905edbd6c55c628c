"""
tests/conftest.py

Shared fixtures: identities, an on-disk store and an engine over it.
Async tests run on the asyncio backend via the anyio pytest plugin.
"""

import pytest

from fileforce.core.delegation import DelegationEngine
from fileforce.core.identity import Identity
from fileforce.ledger.ledger import JsonlEventLedger
from fileforce.store.filestore import FileStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def alice():
    return Identity.generate()


@pytest.fixture
def bob():
    return Identity.generate()


@pytest.fixture
def carol():
    return Identity.generate()


@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path / "store")


@pytest.fixture
def engine(store):
    return DelegationEngine(store)


@pytest.fixture
def ledger(tmp_path):
    return JsonlEventLedger(str(tmp_path / "ledger"), poll_interval=0.01)
