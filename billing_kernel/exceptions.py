"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the admin UI, the scheduler, the accounting export) must react to
lifecycle failures precisely: a refused transition is shown as a flash
message, a lock timeout is retried, a numbering conflict aborts the whole
unit of work.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:

    try:
        invoice_service.cancel(invoice, actor)
    except IllegalTransitionError as e:
        flash(code=e.code, status=e.current_state, action=e.action)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- LifecycleError
    |   +-- IllegalTransitionError
    |   +-- ValidationFailedError
    |   +-- NotAuthorizedError
    |   +-- DocumentNotFoundError
    |
    +-- NumberingError
    |   +-- NumberConflictError
    |   +-- InvalidDocumentNumberError
    |
    +-- BillingError
    |   +-- NoInvoiceToCreditError
    |
    +-- ConcurrencyError
    |   +-- RetryableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Lifecycle    | ILLEGAL_TRANSITION        | Action not legal from current status
             | VALIDATION_FAILED         | Target-status business rule violated
             | NOT_AUTHORIZED            | Authorizer refused the action
             | DOCUMENT_NOT_FOUND        | Document id does not exist
-------------|---------------------------|------------------------------------------
Numbering    | NUMBER_CONFLICT           | Allocated number already exists
             | INVALID_DOCUMENT_NUMBER   | String is not PREFIX-PERIOD-SEQ
-------------|---------------------------|------------------------------------------
Billing      | NO_INVOICE_TO_CREDIT      | Negative amendment, quote not invoiced
-------------|---------------------------|------------------------------------------
Concurrency  | RETRYABLE                 | Lock timeout / deadlock, retry all
-------------|---------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | Modifying an emitted record
-------------|---------------------------|------------------------------------------
Audit        | AUDIT_CHAIN_BROKEN        | Hash chain validation failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY ONLY WHAT IS RETRYABLE:

    except RetryableError:
        # Nothing was committed; re-run the whole transition from scratch.

2. NUMBER CONFLICTS ABORT THE UNIT OF WORK:

    except NumberConflictError as e:
        # The transaction is rolled back; never bump the sequence by hand.
        alert(e.number)

3. NoInvoiceToCreditError IS A RESULT, NOT A CRASH:

    The amendment resolver returns it inside a BillingResolution so the
    signature it follows is still committed.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Lifecycle-related exceptions


class LifecycleError(BillingKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class IllegalTransitionError(LifecycleError):
    """The requested action is not legal from the document's current status."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        document_kind: str,
        document_id: str,
        current_state: str,
        action: str,
        reason: str = "",
    ):
        self.document_kind = document_kind
        self.document_id = document_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {document_kind} {document_id} "
            f"from status '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ValidationFailedError(LifecycleError):
    """
    A business rule guarding the target status is not satisfied.

    ``rules`` holds every violated rule code, in evaluation order;
    ``rule`` is the first of them.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(
        self,
        document_kind: str,
        document_id: str,
        rules: tuple[str, ...],
        messages: tuple[str, ...] = (),
    ):
        self.document_kind = document_kind
        self.document_id = document_id
        self.rules = tuple(rules)
        self.messages = tuple(messages)
        detail = "; ".join(self.messages) if self.messages else ", ".join(self.rules)
        super().__init__(
            f"Validation failed for {document_kind} {document_id}: {detail}"
        )

    @property
    def rule(self) -> str:
        return self.rules[0] if self.rules else ""


class NotAuthorizedError(LifecycleError):
    """The authorization collaborator refused the action."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, action: str, document_kind: str, document_id: str):
        self.actor_id = actor_id
        self.action = action
        self.document_kind = document_kind
        self.document_id = document_id
        super().__init__(
            f"Actor {actor_id} is not allowed to {action} {document_kind} {document_id}"
        )


class DocumentNotFoundError(LifecycleError):
    """Document with the given id does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_kind: str, document_id: str):
        self.document_kind = document_kind
        self.document_id = document_id
        super().__init__(f"{document_kind} not found: {document_id}")


# Numbering-related exceptions


class NumberingError(BillingKernelError):
    """Base exception for sequential numbering errors."""

    code: str = "NUMBERING_ERROR"


class NumberConflictError(NumberingError):
    """
    The allocated number already exists for this document kind.

    The caller's transaction must be rolled back entirely.  The sequence
    is never bumped again inside the same unit of work.
    """

    code: str = "NUMBER_CONFLICT"

    def __init__(self, document_kind: str, number: str):
        self.document_kind = document_kind
        self.number = number
        super().__init__(
            f"Numbering conflict: {document_kind} number {number} already exists"
        )


class InvalidDocumentNumberError(NumberingError):
    """A string does not follow the PREFIX-PERIOD-SEQ format."""

    code: str = "INVALID_DOCUMENT_NUMBER"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Not a valid document number: '{value}'")


# Billing-related exceptions


class BillingError(BillingKernelError):
    """Base exception for amendment billing errors."""

    code: str = "BILLING_ERROR"


class NoInvoiceToCreditError(BillingError):
    """
    A negative amendment cannot be credited: the parent quote has no
    emitted invoice yet.  The amendment stays SIGNED.
    """

    code: str = "NO_INVOICE_TO_CREDIT"

    def __init__(self, amendment_id: str, quote_id: str, amount_incl_tax):
        self.amendment_id = amendment_id
        self.quote_id = quote_id
        self.amount_incl_tax = amount_incl_tax
        super().__init__(
            f"Amendment {amendment_id}: no emitted invoice on quote {quote_id} "
            f"to credit {amount_incl_tax}"
        )


# Concurrency-related exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class RetryableError(ConcurrencyError):
    """
    Lock contention (timeout or deadlock).  Nothing was committed; the
    whole operation may be re-attempted from scratch.
    """

    code: str = "RETRYABLE"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Retryable failure during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# Immutability-related exceptions


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Emitted documents, their lines, and audit events are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit-related exceptions


class AuditError(BillingKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
