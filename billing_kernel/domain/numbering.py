"""
Document number value types (``billing_kernel.domain.numbering``).

The one externally visible, bit-exact contract of the kernel is the
document number::

    PREFIX-PERIOD-SEQ        e.g. FACT-2025-003, AMD-202501-001

PERIOD is ``YYYY`` or ``YYYYMM`` depending on the kind's policy and SEQ is
zero-padded to three digits (it widens past 999: ``FACT-2025-1000``).
``DocumentNumber.format`` and ``DocumentNumber.parse`` are the only code
that builds or splits a number; everything else handles the value type.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from billing_kernel.exceptions import InvalidDocumentNumberError

DEFAULT_PADDING = 3

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*)-(?P<period>\d{4}(?:\d{2})?)-(?P<seq>\d+)$")
_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")


class PeriodGranularity(str, Enum):
    YEAR = "year"
    MONTH = "month"


@dataclass(frozen=True)
class NumberingPolicy:
    """How one document kind is numbered."""

    kind: str
    prefix: str
    period: PeriodGranularity
    padding: int = DEFAULT_PADDING

    def __post_init__(self) -> None:
        if not _PREFIX_RE.match(self.prefix):
            raise ValueError(f"Invalid number prefix: '{self.prefix}'")
        if self.padding < 1:
            raise ValueError(f"Padding must be >= 1, got {self.padding}")


@dataclass(frozen=True, order=True)
class DocumentNumber:
    """Parsed ``PREFIX-PERIOD-SEQ`` number.

    Ordering compares the integer sequence, never the string, so
    ``FACT-2025-1000`` sorts after ``FACT-2025-999``.
    """

    prefix: str
    period_key: str
    sequence: int
    padding: int = DEFAULT_PADDING

    def __post_init__(self) -> None:
        if not _PREFIX_RE.match(self.prefix):
            raise ValueError(f"Invalid number prefix: '{self.prefix}'")
        if len(self.period_key) not in (4, 6) or not self.period_key.isdigit():
            raise ValueError(f"Invalid period key: '{self.period_key}'")
        if self.sequence < 1:
            raise ValueError(f"Sequence must be >= 1, got {self.sequence}")

    def format(self) -> str:
        return f"{self.prefix}-{self.period_key}-{self.sequence:0{self.padding}d}"

    def __str__(self) -> str:
        return self.format()

    @property
    def scope(self) -> str:
        """``PREFIX-PERIOD``: the key space this number was allocated in."""
        return scope_key(self.prefix, self.period_key)

    @classmethod
    def parse(cls, value: str, padding: int = DEFAULT_PADDING) -> "DocumentNumber":
        """
        Parse a canonical number.

        Raises:
            InvalidDocumentNumberError: If ``value`` is not PREFIX-PERIOD-SEQ,
                or is not in canonical zero-padded form.
        """
        match = _NUMBER_RE.match(value or "")
        if match is None:
            raise InvalidDocumentNumberError(value)
        seq = int(match.group("seq"))
        if seq < 1:
            raise InvalidDocumentNumberError(value)
        number = cls(match.group("prefix"), match.group("period"), seq, padding)
        if number.format() != value:
            raise InvalidDocumentNumberError(value)
        return number

    @classmethod
    def try_parse(cls, value: str, padding: int = DEFAULT_PADDING) -> "DocumentNumber | None":
        try:
            return cls.parse(value, padding)
        except InvalidDocumentNumberError:
            return None


def period_key_for(policy: NumberingPolicy, moment: date | datetime) -> str:
    """Period key for ``moment`` under ``policy`` (``YYYY`` or ``YYYYMM``)."""
    if policy.period == PeriodGranularity.MONTH:
        return f"{moment.year:04d}{moment.month:02d}"
    return f"{moment.year:04d}"


def scope_key(prefix: str, period_key: str) -> str:
    return f"{prefix}-{period_key}"


def scope_like_pattern(prefix: str, period_key: str) -> str:
    """SQL LIKE pattern matching every number of one scope."""
    return f"{scope_key(prefix, period_key)}-%"


def counter_name(kind: str, prefix: str, period_key: str) -> str:
    """Name of the sequence counter row backing one numbering scope."""
    kind = getattr(kind, "value", kind)
    return f"{kind}:{scope_key(prefix, period_key)}"


DEFAULT_NUMBERING_POLICIES: dict[str, NumberingPolicy] = {
    "quote": NumberingPolicy("quote", "DEV", PeriodGranularity.YEAR),
    "invoice": NumberingPolicy("invoice", "FACT", PeriodGranularity.YEAR),
    "amendment": NumberingPolicy("amendment", "AMD", PeriodGranularity.MONTH),
    "credit_note": NumberingPolicy("credit_note", "AV", PeriodGranularity.YEAR),
}
