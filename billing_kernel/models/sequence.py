"""
Module: billing_kernel.models.sequence
Responsibility: ORM persistence for named, lockable sequence counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per counter name (unique).
    - current_value only ever increases, under a row lock held by the
      caller's transaction (see services/sequence_service.py).

Counter names:
    - ``audit_event`` -- the audit chain's ``seq``.
    - ``<kind>:<PREFIX>-<PERIOD>`` -- one per document numbering scope,
      e.g. ``invoice:FACT-2025``.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
