"""Database layer - engine, base classes, types, and immutability."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from billing_kernel.db.engine import create_tables, get_engine, get_session
from billing_kernel.db.types import Money, PayloadHash, Sequence, TaxRate

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "TaxRate",
    "Sequence",
    "PayloadHash",
]
