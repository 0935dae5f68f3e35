from datetime import datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mpesa_ingest.integration.rest_store import RestLedgerStore
from mpesa_ingest.integration.store import StoreConflictError, StoreError
from mpesa_ingest.models import Direction, NewTransaction

TX_ROW = {
    "id": 42,
    "user_id": "user-1",
    "source_id": "src-1",
    "category_id": "cat-1",
    "type": "income",
    "amount": 1500.0,
    "currency": "KES",
    "description": "Received from JANE DOE",
    "merchant": "JANE DOE",
    "timestamp": "2024-03-14T14:05:00",
    "metadata": {"rawBody": "...", "referenceCode": "QGH7XYZ12", "balanceAfter": "12345.00"},
    "created_at": "2024-03-14T14:05:03",
}


def _response(rows: Any) -> MagicMock:
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = rows
    return response


def _error_response(status: int) -> MagicMock:
    request = httpx.Request("POST", "http://test/rest/v1/sources")
    response = MagicMock()
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(status, request=request)
    )
    return response


def _store(*responses: MagicMock) -> tuple[RestLedgerStore, AsyncMock]:
    client = AsyncMock()
    client.is_closed = False
    client.request = AsyncMock(side_effect=list(responses))
    return RestLedgerStore(base_url="http://test/", token="secret", client=client), client


@pytest.mark.anyio
async def test_find_by_reference_code_filters_metadata():
    store, client = _store(_response([TX_ROW]))

    tx = await store.find_transaction_by_reference_code("user-1", "QGH7XYZ12")

    assert tx is not None
    assert tx.id == "42"
    assert tx.direction == Direction.INCOME
    assert tx.amount == Decimal("1500")
    assert tx.counterparty == "JANE DOE"
    assert tx.reference_code == "QGH7XYZ12"
    assert tx.balance_after == Decimal("12345.00")
    assert tx.timestamp == datetime(2024, 3, 14, 14, 5)

    method, url = client.request.call_args.args
    params = client.request.call_args.kwargs["params"]
    assert method == "GET"
    assert url == "http://test/rest/v1/transactions"
    assert ("user_id", "eq.user-1") in params
    assert ("metadata->>referenceCode", "eq.QGH7XYZ12") in params
    assert ("limit", "1") in params
    assert client.request.call_args.kwargs["headers"]["apikey"] == "secret"


@pytest.mark.anyio
async def test_find_by_reference_code_miss():
    store, _ = _store(_response([]))

    assert await store.find_transaction_by_reference_code("user-1", "NOPE") is None


@pytest.mark.anyio
async def test_window_lookup_uses_inclusive_bounds():
    store, client = _store(_response([]))
    start = datetime(2024, 3, 14, 14, 4)
    end = datetime(2024, 3, 14, 14, 6)

    await store.find_transaction_by_amount_and_counterparty_in_window(
        "user-1", Decimal("340.00"), "NAIVAS", start, end
    )

    params = client.request.call_args.kwargs["params"]
    assert ("amount", "eq.340.00") in params
    assert ("merchant", "eq.NAIVAS") in params
    assert ("timestamp", "gte.2024-03-14T14:04:00") in params
    assert ("timestamp", "lte.2024-03-14T14:06:00") in params


@pytest.mark.anyio
async def test_create_transaction_posts_row():
    store, client = _store(_response([TX_ROW]))
    record = NewTransaction(
        direction=Direction.INCOME,
        amount=Decimal("1500.00"),
        timestamp=datetime(2024, 3, 14, 14, 5),
        description="Received from JANE DOE",
        counterparty="JANE DOE",
        balance_after=Decimal("12345.00"),
        reference_code="QGH7XYZ12",
        user_id="user-1",
        source_id="src-1",
        category_id="cat-1",
        metadata={"rawBody": "...", "referenceCode": "QGH7XYZ12"},
    )

    stored = await store.create_transaction(record)

    assert stored.id == "42"
    kwargs = client.request.call_args.kwargs
    assert client.request.call_args.args[0] == "POST"
    assert kwargs["headers"]["Prefer"] == "return=representation"
    payload = kwargs["json"]
    assert payload["type"] == "income"
    assert payload["amount"] == "1500.00"
    assert payload["merchant"] == "JANE DOE"
    assert payload["timestamp"] == "2024-03-14T14:05:00"
    assert payload["metadata"]["referenceCode"] == "QGH7XYZ12"
    assert payload["metadata"]["balanceAfter"] == "12345.00"


@pytest.mark.anyio
async def test_get_or_create_source_returns_existing():
    store, client = _store(_response([{"id": "src-1", "name": "M-Pesa"}]))

    source = await store.get_or_create_source("user-1", "M-Pesa")

    assert source.id == "src-1"
    assert client.request.await_count == 1


@pytest.mark.anyio
async def test_get_or_create_source_creates_when_missing():
    store, client = _store(_response([]), _response([{"id": "src-9", "name": "M-Pesa"}]))

    source = await store.get_or_create_source("user-1", "M-Pesa")

    assert source.id == "src-9"
    payload = client.request.call_args.kwargs["json"]
    assert payload == {
        "user_id": "user-1",
        "name": "M-Pesa",
        "type": "mobile_money",
        "currency": "KES",
        "balance": 0,
    }


@pytest.mark.anyio
async def test_get_or_create_category_refetches_after_conflict():
    store, client = _store(
        _response([]),
        _error_response(409),
        _response([{"id": "cat-7", "name": "Uncategorized Expense", "type": "expense"}]),
    )

    category = await store.get_or_create_category("user-1", "Uncategorized Expense", Direction.EXPENSE)

    assert category.id == "cat-7"
    assert category.direction == Direction.EXPENSE
    assert client.request.await_count == 3


@pytest.mark.anyio
async def test_conflict_without_winner_is_raised():
    store, _ = _store(_response([]), _error_response(409), _response([]))

    with pytest.raises(StoreConflictError):
        await store.get_or_create_source("user-1", "M-Pesa")


@pytest.mark.anyio
async def test_http_error_becomes_store_error():
    store, _ = _store(_error_response(500))

    with pytest.raises(StoreError) as excinfo:
        await store.find_transaction_by_reference_code("user-1", "QGH7XYZ12")
    assert not isinstance(excinfo.value, StoreConflictError)


@pytest.mark.anyio
async def test_transport_error_becomes_store_error():
    client = AsyncMock()
    client.is_closed = False
    client.request = AsyncMock(side_effect=httpx.ConnectError("unreachable"))
    store = RestLedgerStore(base_url="http://test", token="secret", client=client)

    with pytest.raises(StoreError):
        await store.get_or_create_source("user-1", "M-Pesa")


@pytest.mark.anyio
async def test_missing_credentials_raise(monkeypatch):
    monkeypatch.delenv("STORE_URL", raising=False)
    monkeypatch.delenv("STORE_TOKEN", raising=False)
    store = RestLedgerStore()

    with pytest.raises(StoreError):
        await store.find_transaction_by_reference_code("user-1", "X")


@pytest.mark.anyio
async def test_client_created_lazily_and_closed():
    with patch("httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.is_closed = False
        mock_client.request = AsyncMock(return_value=_response([]))
        mock_client_cls.return_value = mock_client

        store = RestLedgerStore(base_url="http://test", token="secret")
        await store.find_transaction_by_reference_code("user-1", "X")
        await store.find_transaction_by_reference_code("user-1", "Y")
        await store.aclose()

    mock_client_cls.assert_called_once()
    mock_client.aclose.assert_awaited_once()


@pytest.mark.anyio
async def test_offset_timestamp_keeps_wall_clock_time():
    row = dict(TX_ROW, timestamp="2024-03-14T14:05:00+00:00", created_at="2024-03-14T11:05:03Z")
    store, _ = _store(_response([row]))

    tx = await store.find_transaction_by_reference_code("user-1", "QGH7XYZ12")

    assert tx.timestamp == datetime(2024, 3, 14, 14, 5)
    assert tx.timestamp.tzinfo is None
    assert tx.created_at == datetime(2024, 3, 14, 11, 5, 3)


@pytest.mark.anyio
@pytest.mark.parametrize("timestamp", [None, "", "yesterday"])
async def test_row_without_usable_timestamp_is_a_store_error(timestamp):
    row = dict(TX_ROW, timestamp=timestamp)
    store, _ = _store(_response([row]))

    with pytest.raises(StoreError):
        await store.find_transaction_by_reference_code("user-1", "QGH7XYZ12")


@pytest.mark.anyio
async def test_row_with_bad_amount_is_a_store_error():
    row = dict(TX_ROW, amount="lots")
    store, _ = _store(_response([row]))

    with pytest.raises(StoreError):
        await store.find_transaction_by_reference_code("user-1", "QGH7XYZ12")
