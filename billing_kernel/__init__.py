"""
Billing Kernel

Lifecycle and sequential numbering engine for commercial documents:
- Quotes, Invoices, Amendments and Credit Notes as guarded state machines
- Gap-free PREFIX-PERIOD-SEQ numbering under pessimistic locks
- Amendment billing (supplement invoice / credit note from the net delta)
- Hash-chained, append-only audit trail
"""

__version__ = "0.1.0"
