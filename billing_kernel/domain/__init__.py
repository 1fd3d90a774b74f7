"""
Pure domain layer.

Lifecycle tables, tax arithmetic, number value types, validation rules
and capability checks.  No ORM, no database, no I/O other than the
sanctioned SystemClock.
"""

from billing_kernel.domain.authorization import (
    SYSTEM_ACTOR,
    Actor,
    CapabilityAuthorizer,
    RoleGrants,
    check_capability,
)
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.collaborators import (
    AllowAllAuthorizer,
    Authorizer,
    DocumentDispatcher,
    NullDispatcher,
    NullSubscriptionGateway,
    SubscriptionBillingGateway,
)
from billing_kernel.domain.dtos import DocumentSummary, LineInput, LineSummary, SubscriptionMode
from billing_kernel.domain.lifecycle import (
    WORKFLOWS,
    Action,
    AmendmentStatus,
    CreditNoteStatus,
    DocumentKind,
    InvoiceStatus,
    QuoteStatus,
)
from billing_kernel.domain.numbering import (
    DocumentNumber,
    NumberingPolicy,
    PeriodGranularity,
    period_key_for,
)
from billing_kernel.domain.settings import KernelSettings
from billing_kernel.domain.tax import TaxSplit, line_totals, split_tax, sum_totals
from billing_kernel.domain.workflow import Transition, TransitionResult, Workflow, resolve_transition

__all__ = [
    "Action",
    "Actor",
    "AllowAllAuthorizer",
    "AmendmentStatus",
    "Authorizer",
    "CapabilityAuthorizer",
    "Clock",
    "CreditNoteStatus",
    "DeterministicClock",
    "DocumentDispatcher",
    "DocumentKind",
    "DocumentNumber",
    "DocumentSummary",
    "InvoiceStatus",
    "KernelSettings",
    "LineInput",
    "LineSummary",
    "NullDispatcher",
    "NullSubscriptionGateway",
    "NumberingPolicy",
    "PeriodGranularity",
    "QuoteStatus",
    "RoleGrants",
    "SYSTEM_ACTOR",
    "SubscriptionBillingGateway",
    "SubscriptionMode",
    "SystemClock",
    "TaxSplit",
    "Transition",
    "TransitionResult",
    "WORKFLOWS",
    "Workflow",
    "check_capability",
    "line_totals",
    "period_key_for",
    "resolve_transition",
    "split_tax",
    "sum_totals",
]
