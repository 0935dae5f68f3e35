import asyncio
import uuid
from datetime import datetime
from decimal import Decimal

from mpesa_ingest.integration.store import LedgerStore, StoreConflictError
from mpesa_ingest.logger import get_logger
from mpesa_ingest.models import Category, Direction, NewTransaction, Source, StoredTransaction

logger = get_logger(__name__)


class InMemoryLedgerStore(LedgerStore):
    """Process-local ledger, used when no hosted store is configured and in tests."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.transactions: dict[str, StoredTransaction] = {}
        self.sources: dict[tuple[str, str], Source] = {}
        self.categories: dict[tuple[str, str], Category] = {}

    async def create_transaction(self, record: NewTransaction) -> StoredTransaction:
        async with self._lock:
            stored = StoredTransaction(
                **record.model_dump(),
                id=str(uuid.uuid4()),
                created_at=datetime.now(),
            )
            self.transactions[stored.id] = stored
            return stored

    async def find_transaction_by_reference_code(
        self, user_id: str, reference_code: str
    ) -> StoredTransaction | None:
        async with self._lock:
            for tx in self.transactions.values():
                if tx.user_id == user_id and tx.metadata.get("referenceCode") == reference_code:
                    return tx
        return None

    async def find_transaction_by_amount_and_counterparty_in_window(
        self,
        user_id: str,
        amount: Decimal,
        counterparty: str,
        start: datetime,
        end: datetime,
    ) -> StoredTransaction | None:
        async with self._lock:
            for tx in self.transactions.values():
                if (
                    tx.user_id == user_id
                    and tx.amount == amount
                    and tx.counterparty == counterparty
                    and start <= tx.timestamp <= end
                ):
                    return tx
        return None

    async def _find_source(self, user_id: str, name: str) -> Source | None:
        async with self._lock:
            return self.sources.get((user_id, name))

    async def _insert_source(self, user_id: str, name: str) -> Source:
        async with self._lock:
            if (user_id, name) in self.sources:
                raise StoreConflictError(f"Source '{name}' already exists")
            source = Source(id=str(uuid.uuid4()), user_id=user_id, name=name)
            self.sources[(user_id, name)] = source
            return source

    async def get_or_create_source(self, user_id: str, name: str) -> Source:
        source = await self._find_source(user_id, name)
        if source:
            return source
        logger.info("[STORE] Source '%s' not found, creating it.", name)
        try:
            return await self._insert_source(user_id, name)
        except StoreConflictError:
            logger.debug("[STORE] Source '%s' created concurrently; re-fetching.", name)
            source = await self._find_source(user_id, name)
            if source is None:
                raise
            return source

    async def _find_category(self, user_id: str, name: str) -> Category | None:
        async with self._lock:
            return self.categories.get((user_id, name))

    async def _insert_category(self, user_id: str, name: str, direction: Direction) -> Category:
        async with self._lock:
            if (user_id, name) in self.categories:
                raise StoreConflictError(f"Category '{name}' already exists")
            category = Category(id=str(uuid.uuid4()), user_id=user_id, name=name, direction=direction)
            self.categories[(user_id, name)] = category
            return category

    async def get_or_create_category(
        self, user_id: str, name: str, direction: Direction
    ) -> Category:
        category = await self._find_category(user_id, name)
        if category:
            return category
        logger.info("[STORE] Category '%s' not found, creating it.", name)
        try:
            return await self._insert_category(user_id, name, direction)
        except StoreConflictError:
            logger.debug("[STORE] Category '%s' created concurrently; re-fetching.", name)
            category = await self._find_category(user_id, name)
            if category is None:
                raise
            return category
