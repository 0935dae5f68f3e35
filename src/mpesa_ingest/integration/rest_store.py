import asyncio
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from mpesa_ingest.integration.store import LedgerStore, StoreConflictError, StoreError
from mpesa_ingest.logger import get_logger
from mpesa_ingest.models import (
    CURRENCY,
    Category,
    Direction,
    NewTransaction,
    Source,
    StoredTransaction,
)

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
SOURCE_TYPE = "mobile_money"
DEFAULT_CATEGORY_COLOR = "#CCCCCC"
DEFAULT_CATEGORY_ICON = "tag"


def _parse_timestamp(value: Any, column: str) -> datetime:
    if not value or not isinstance(value, str):
        raise StoreError(f"Row is missing '{column}'")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise StoreError(f"Row has malformed '{column}': {value!r}") from exc
    # Ledger times are wall-clock values; the offset is dropped, never applied
    return parsed.replace(tzinfo=None)


def _row_to_transaction(row: dict[str, Any]) -> StoredTransaction:
    metadata = row.get("metadata") or {}
    balance = metadata.get("balanceAfter")
    try:
        return StoredTransaction(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            source_id=str(row.get("source_id") or ""),
            category_id=str(row.get("category_id") or ""),
            direction=Direction(row["type"]),
            amount=Decimal(str(row["amount"])),
            currency=row.get("currency") or CURRENCY,
            timestamp=_parse_timestamp(row.get("timestamp"), "timestamp"),
            description=row.get("description") or "",
            counterparty=row.get("merchant"),
            balance_after=Decimal(str(balance)) if balance is not None else None,
            reference_code=metadata.get("referenceCode"),
            metadata=metadata,
            created_at=_parse_timestamp(row.get("created_at"), "created_at"),
        )
    except (KeyError, ValueError, InvalidOperation) as exc:
        raise StoreError(f"Malformed transaction row: {exc}") from exc


def _transaction_to_row(record: NewTransaction) -> dict[str, Any]:
    metadata = dict(record.metadata)
    if record.balance_after is not None:
        metadata.setdefault("balanceAfter", str(record.balance_after))
    return {
        "user_id": record.user_id,
        "source_id": record.source_id,
        "category_id": record.category_id,
        "type": record.direction.value,
        "amount": str(record.amount),
        "currency": record.currency,
        "description": record.description,
        "merchant": record.counterparty,
        "timestamp": record.timestamp.isoformat(),
        "metadata": metadata,
    }


class RestLedgerStore(LedgerStore):
    """Ledger backed by a PostgREST endpoint (``/rest/v1/<table>``).

    Failures are raised as ``StoreError``; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or os.getenv("STORE_URL") or "").rstrip("/") or None
        self.token = token or os.getenv("STORE_TOKEN")
        self.timeout = timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS
        self.headers = {
            "apikey": self.token or "",
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client = client
        self._client_lock = asyncio.Lock()

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient()
                self._client = client
            return client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        payload: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        if not self.base_url or not self.token:
            raise StoreError("Store credentials missing.")

        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}/rest/v1/{table}",
                headers=headers,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status == 409:
                raise StoreConflictError(f"{method} {table} conflicted with an existing row") from exc
            raise StoreError(f"{method} {table} failed with HTTP {status}") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc

        data = response.json()
        if isinstance(data, list):
            return data
        return [data] if data else []

    async def _select_one(self, table: str, filters: list[tuple[str, str]]) -> dict[str, Any] | None:
        rows = await self._request("GET", table, params=[("select", "*"), *filters, ("limit", "1")])
        return rows[0] if rows else None

    async def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", table, payload=row, prefer="return=representation")
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]

    async def create_transaction(self, record: NewTransaction) -> StoredTransaction:
        row = await self._insert("transactions", _transaction_to_row(record))
        return _row_to_transaction(row)

    async def find_transaction_by_reference_code(
        self, user_id: str, reference_code: str
    ) -> StoredTransaction | None:
        row = await self._select_one(
            "transactions",
            [
                ("user_id", f"eq.{user_id}"),
                ("metadata->>referenceCode", f"eq.{reference_code}"),
            ],
        )
        return _row_to_transaction(row) if row else None

    async def find_transaction_by_amount_and_counterparty_in_window(
        self,
        user_id: str,
        amount: Decimal,
        counterparty: str,
        start: datetime,
        end: datetime,
    ) -> StoredTransaction | None:
        row = await self._select_one(
            "transactions",
            [
                ("user_id", f"eq.{user_id}"),
                ("amount", f"eq.{amount}"),
                ("merchant", f"eq.{counterparty}"),
                ("timestamp", f"gte.{start.isoformat()}"),
                ("timestamp", f"lte.{end.isoformat()}"),
            ],
        )
        return _row_to_transaction(row) if row else None

    async def _get_or_create(
        self,
        table: str,
        filters: list[tuple[str, str]],
        new_row: dict[str, Any],
    ) -> dict[str, Any]:
        row = await self._select_one(table, filters)
        if row:
            return row

        logger.info("[STORE] '%s' not found in %s, creating it.", new_row.get("name"), table)
        try:
            return await self._insert(table, new_row)
        except StoreConflictError:
            logger.debug("[STORE] Concurrent create in %s; re-fetching.", table)
            row = await self._select_one(table, filters)
            if row is None:
                raise
            return row

    async def get_or_create_source(self, user_id: str, name: str) -> Source:
        row = await self._get_or_create(
            "sources",
            [("user_id", f"eq.{user_id}"), ("name", f"eq.{name}")],
            {
                "user_id": user_id,
                "name": name,
                "type": SOURCE_TYPE,
                "currency": CURRENCY,
                "balance": 0,
            },
        )
        return Source(id=str(row["id"]), user_id=user_id, name=row.get("name") or name)

    async def get_or_create_category(
        self, user_id: str, name: str, direction: Direction
    ) -> Category:
        row = await self._get_or_create(
            "categories",
            [("user_id", f"eq.{user_id}"), ("name", f"eq.{name}")],
            {
                "user_id": user_id,
                "name": name,
                "type": direction.value,
                "color": DEFAULT_CATEGORY_COLOR,
                "icon": DEFAULT_CATEGORY_ICON,
                "is_default": True,
            },
        )
        return Category(
            id=str(row["id"]),
            user_id=user_id,
            name=row.get("name") or name,
            direction=Direction(row.get("type") or direction.value),
        )
