"""Message templates for M-PESA confirmation notifications.

A template pairs an anchored regular expression with a field map. Each logical
field is resolved by a rule that is either ``Group`` (copy a named capture
group) or ``Derived`` (a pure function over the whole match), so every
template can be exercised on its own.

Catalog order is the precedence order: the classifier returns the first
template that matches, so more specific shapes must be registered before the
general ones they overlap with (``paybill`` before ``till``).
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from mpesa_ingest.models import Direction

FIELD_NAMES = (
    "reference_code",
    "amount",
    "counterparty",
    "date",
    "time",
    "balance_after",
    "description",
)
REQUIRED_FIELDS = ("amount", "date", "time", "balance_after", "description")


@dataclass(frozen=True)
class Group:
    name: str

    def resolve(self, match: re.Match[str]) -> str | None:
        return match.group(self.name)


@dataclass(frozen=True)
class Derived:
    func: Callable[[re.Match[str]], str]

    def resolve(self, match: re.Match[str]) -> str | None:
        return self.func(match)


FieldRule = Group | Derived


@dataclass(frozen=True)
class Template:
    name: str
    direction: Direction
    pattern: re.Pattern[str]
    fields: Mapping[str, FieldRule]

    def __post_init__(self) -> None:
        unknown = set(self.fields) - set(FIELD_NAMES)
        if unknown:
            raise ValueError(f"Template {self.name!r} maps unknown fields: {sorted(unknown)}")
        missing = [name for name in REQUIRED_FIELDS if name not in self.fields]
        if missing:
            raise ValueError(f"Template {self.name!r} is missing fields: {missing}")
        for rule in self.fields.values():
            if isinstance(rule, Group) and rule.name not in self.pattern.groupindex:
                raise ValueError(f"Template {self.name!r} has no capture group {rule.name!r}")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def match(self, body: str) -> re.Match[str] | None:
        return self.pattern.match(body)


@dataclass(frozen=True)
class TemplateCatalog:
    """Ordered, immutable list of templates. First registered wins."""
    templates: tuple[Template, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "templates", tuple(self.templates))
        names = [template.name for template in self.templates]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate template names: {duplicates}")

    def __iter__(self) -> Iterator[Template]:
        return iter(self.templates)

    def __len__(self) -> int:
        return len(self.templates)

    def names(self) -> list[str]:
        return [template.name for template in self.templates]


# Shared pattern fragments. Amounts keep grouping commas; the normalizer strips them.
_AMOUNT = r"\d[\d,]*(?:\.\d+)?"
_HEAD = r"^(?P<code>[A-Z0-9]+) Confirmed\.?\s*"
_TAIL = (
    r" on (?P<date>\d{1,2}/\d{1,2}/\d{2,4})"
    r" at (?P<time>\d{1,2}:\d{2} ?[AP]M)\.?"
    rf" New M-PESA balance is Ksh(?P<balance>{_AMOUNT})"
)


def _compile(middle: str) -> re.Pattern[str]:
    return re.compile(_HEAD + middle + _TAIL)


def _envelope(**extra: FieldRule) -> dict[str, FieldRule]:
    rules: dict[str, FieldRule] = {
        "reference_code": Group("code"),
        "amount": Group("amount"),
        "date": Group("date"),
        "time": Group("time"),
        "balance_after": Group("balance"),
    }
    rules.update(extra)
    return rules


RECEIVED = Template(
    name="received",
    direction=Direction.INCOME,
    pattern=_compile(
        rf"You (?:have )?received Ksh(?P<amount>{_AMOUNT})"
        r" from (?P<name>[A-Z][A-Z .'&-]*?) (?P<phone>\d+)"
    ),
    fields=_envelope(
        counterparty=Group("name"),
        description=Derived(lambda m: f"Received from {m['name']}"),
    ),
)

SENT = Template(
    name="sent",
    direction=Direction.EXPENSE,
    pattern=_compile(rf"Ksh(?P<amount>{_AMOUNT}) sent to (?P<name>.+?)(?: (?P<phone>\d+))?"),
    fields=_envelope(
        counterparty=Group("name"),
        description=Derived(lambda m: f"Sent to {m['name']}"),
    ),
)

PAYBILL = Template(
    name="paybill",
    direction=Direction.EXPENSE,
    pattern=_compile(
        rf"Ksh(?P<amount>{_AMOUNT}) paid to (?P<name>.+?) for account (?P<account>.+?)"
    ),
    fields=_envelope(
        counterparty=Group("name"),
        description=Derived(lambda m: f"Paid to {m['name']} (Acc: {m['account']})"),
    ),
)

TILL = Template(
    name="till",
    direction=Direction.EXPENSE,
    pattern=_compile(rf"Ksh(?P<amount>{_AMOUNT}) paid to (?P<name>.+?)"),
    fields=_envelope(
        counterparty=Group("name"),
        description=Derived(lambda m: f"Paid to {m['name']}"),
    ),
)

AIRTIME = Template(
    name="airtime",
    direction=Direction.EXPENSE,
    pattern=_compile(rf"Ksh(?P<amount>{_AMOUNT}) airtime bought for (?P<phone>\d+)"),
    fields=_envelope(
        counterparty=Derived(lambda m: f"Airtime for {m['phone']}"),
        description=Derived(lambda m: f"Airtime for {m['phone']}"),
    ),
)

WITHDRAWAL = Template(
    name="withdrawal",
    direction=Direction.EXPENSE,
    pattern=_compile(
        rf"Ksh(?P<amount>{_AMOUNT}) withdrawn from agent (?P<agent>\d+) at (?P<outlet>\d+)"
    ),
    fields=_envelope(
        counterparty=Derived(lambda m: f"Agent {m['agent']}"),
        description=Derived(lambda m: f"Withdrawal from Agent {m['agent']}"),
    ),
)

DEFAULT_CATALOG = TemplateCatalog((RECEIVED, SENT, PAYBILL, TILL, AIRTIME, WITHDRAWAL))
