import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation

from mpesa_ingest.models import CURRENCY, ParsedCandidate
from mpesa_ingest.parsing.classifier import MessageMatch

_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")


class NormalizationError(ValueError):
    """A matched field could not be turned into a canonical value."""


def parse_amount(raw: str | None, *, field: str = "amount") -> Decimal:
    if raw is None:
        raise NormalizationError(f"{field} is missing")
    cleaned = raw.replace(",", "").strip()
    if not cleaned:
        raise NormalizationError(f"{field} is empty")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise NormalizationError(f"{field} is not numeric: {raw!r}") from exc
    if not value.is_finite():
        raise NormalizationError(f"{field} is not numeric: {raw!r}")
    return value


def parse_date(raw: str | None) -> date:
    """Parse ``M/D/Y``; a two-digit year means 20YY."""
    match = _DATE_RE.match((raw or "").strip())
    if not match:
        raise NormalizationError(f"Unrecognised date: {raw!r}")
    month, day, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise NormalizationError(f"Invalid date {raw!r}: {exc}") from exc


def parse_time(raw: str | None) -> time:
    """Parse a 12-hour clock time such as ``2:05 PM``."""
    match = _TIME_RE.match((raw or "").strip())
    if not match:
        raise NormalizationError(f"Unrecognised time: {raw!r}")
    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = match.group(3).upper()
    if not 1 <= hour <= 12 or minute > 59:
        raise NormalizationError(f"Invalid time: {raw!r}")

    if meridiem == "AM" and hour == 12:
        hour = 0
    elif meridiem == "PM" and hour != 12:
        hour += 12
    return time(hour, minute)


def combine_timestamp(raw_date: str | None, raw_time: str | None) -> datetime:
    # Local wall-clock time; no zone conversion
    return datetime.combine(parse_date(raw_date), parse_time(raw_time))


def normalize(match: MessageMatch) -> ParsedCandidate:
    fields = match.fields

    amount = parse_amount(fields.get("amount"))
    if amount <= 0:
        raise NormalizationError(f"amount must be positive, got {amount}")

    balance_after = None
    if fields.get("balance_after"):
        balance_after = parse_amount(fields["balance_after"], field="balance_after")

    description = fields.get("description")
    if not description:
        raise NormalizationError("description is empty")

    return ParsedCandidate(
        direction=match.template.direction,
        amount=amount,
        currency=CURRENCY,
        timestamp=combine_timestamp(fields.get("date"), fields.get("time")),
        description=description,
        counterparty=fields.get("counterparty") or None,
        balance_after=balance_after,
        reference_code=fields.get("reference_code") or None,
    )
