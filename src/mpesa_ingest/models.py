from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

CURRENCY = "KES"


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class RawMessage(BaseModel):
    body: str
    origin: str = ""


class ParsedCandidate(BaseModel):
    direction: Direction
    amount: Decimal = Field(gt=0)
    currency: str = CURRENCY
    timestamp: datetime
    description: str
    counterparty: str | None = None
    balance_after: Decimal | None = None
    reference_code: str | None = None


class NewTransaction(ParsedCandidate):
    """Record handed to the store for creation."""
    user_id: str
    source_id: str
    category_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class StoredTransaction(NewTransaction):
    id: str
    created_at: datetime


class Source(BaseModel):
    id: str
    user_id: str
    name: str


class Category(BaseModel):
    id: str
    user_id: str
    name: str
    direction: Direction


class SkipReason(str, Enum):
    NOT_PROVIDER = "not-provider"
    UNMATCHED = "unmatched"
    DUPLICATE = "duplicate"


class RejectReason(str, Enum):
    PARSE_ERROR = "parse-error"
    STORE_ERROR = "store-error"


class Committed(BaseModel):
    status: Literal["committed"] = "committed"
    transaction_id: str


class Skipped(BaseModel):
    status: Literal["skipped"] = "skipped"
    reason: SkipReason
    # Set for duplicates: the record the message collided with
    transaction_id: str | None = None


class Rejected(BaseModel):
    status: Literal["rejected"] = "rejected"
    reason: RejectReason
    detail: str | None = None


IngestResult = Annotated[Committed | Skipped | Rejected, Field(discriminator="status")]
