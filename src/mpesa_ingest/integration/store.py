from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from mpesa_ingest.models import Category, Direction, NewTransaction, Source, StoredTransaction


class StoreError(Exception):
    """The ledger store could not complete a request."""


class StoreConflictError(StoreError):
    """A create collided with an existing record."""


class LedgerStore(ABC):
    """Narrow view of the hosted ledger used by the ingestion pipeline."""

    @abstractmethod
    async def create_transaction(self, record: NewTransaction) -> StoredTransaction:
        pass

    @abstractmethod
    async def find_transaction_by_reference_code(
        self, user_id: str, reference_code: str
    ) -> StoredTransaction | None:
        pass

    @abstractmethod
    async def find_transaction_by_amount_and_counterparty_in_window(
        self,
        user_id: str,
        amount: Decimal,
        counterparty: str,
        start: datetime,
        end: datetime,
    ) -> StoredTransaction | None:
        """Return any one transaction whose timestamp lies in ``[start, end]``."""
        pass

    @abstractmethod
    async def get_or_create_source(self, user_id: str, name: str) -> Source:
        pass

    @abstractmethod
    async def get_or_create_category(
        self, user_id: str, name: str, direction: Direction
    ) -> Category:
        pass

    async def aclose(self) -> None:
        return None
