"""
Data Transfer Objects for the billing kernel.

Immutable value objects passed between the service layer and callers.
None of them reference ORM instances.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.db.types import ZERO


class SubscriptionMode(str, Enum):
    ONCE = "once"
    MONTHLY = "monthly"
    YEARLY = "yearly"


RECURRING_MODES = frozenset({SubscriptionMode.MONTHLY.value, SubscriptionMode.YEARLY.value})


@dataclass(frozen=True)
class LineInput:
    """A line as submitted by a caller.

    ``tax_rate=None`` means the document's rate applies.  With
    ``tax_inclusive`` the unit price includes tax and the line is split
    with the TaxSplitter.  For amendment lines ``source_line_id`` points
    at the quote line being modified.
    """

    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal | None = None
    tax_inclusive: bool = False
    subscription_mode: str | None = None
    subscription_id: str | None = None
    source_line_id: UUID | None = None


@dataclass(frozen=True)
class LineSummary:
    position: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_excl_tax: Decimal
    total_tax: Decimal
    total_incl_tax: Decimal


@dataclass(frozen=True)
class DocumentSummary:
    """Read-side view of any document kind."""

    kind: str
    id: UUID
    number: str | None
    status: str
    company_id: UUID
    tax_rate: Decimal
    amount_excl_tax: Decimal = ZERO
    amount_tax: Decimal = ZERO
    amount_incl_tax: Decimal = ZERO
    sent_count: int = 0
    last_sent_at: datetime | None = None
    issued_at: datetime | None = None
    due_date: date | None = None
    lines: tuple[LineSummary, ...] = ()

    @property
    def is_numbered(self) -> bool:
        return self.number is not None
