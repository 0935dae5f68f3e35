import pytest

from mpesa_ingest.integration.memory_store import InMemoryLedgerStore
from mpesa_ingest.services.ingestion import IngestionCoordinator


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def coordinator(store: InMemoryLedgerStore) -> IngestionCoordinator:
    return IngestionCoordinator(store)
