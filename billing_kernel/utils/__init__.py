"""Utility modules for the billing kernel."""

from billing_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_document_snapshot,
    hash_payload,
)

__all__ = [
    "hash_payload",
    "hash_audit_event",
    "hash_document_snapshot",
    "canonicalize_json",
]
