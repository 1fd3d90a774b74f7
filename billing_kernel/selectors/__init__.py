"""Selectors for the billing kernel (read side)."""

from billing_kernel.selectors.document_selector import DocumentSelector

__all__ = [
    "DocumentSelector",
]
