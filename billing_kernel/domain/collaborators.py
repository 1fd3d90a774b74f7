"""
External collaborator interfaces (``billing_kernel.domain.collaborators``).

The kernel talks to excluded functionality through three narrow
protocols.  Each has a null implementation so services can be built
without any of them wired.

* ``Authorizer`` -- consulted before every state change.
* ``DocumentDispatcher`` -- PDF rendering / e-mail, invoked after commit.
* ``SubscriptionBillingGateway`` -- recurring billing updates from the
  zero-delta amendment path.  Fire-and-forget.
"""

from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID


class Authorizer(Protocol):
    def is_allowed(self, actor: Any, action: str, document: Any) -> bool:
        ...


class DocumentDispatcher(Protocol):
    def dispatch(self, kind: str, document_id: UUID) -> None:
        ...


class SubscriptionBillingGateway(Protocol):
    def update_subscription(
        self,
        subscription_id: str,
        new_quantity: Decimal,
        new_unit_price: Decimal,
    ) -> None:
        ...


class AllowAllAuthorizer:
    """Authorizer for trusted system actors (scheduler, billing resolver)."""

    def is_allowed(self, actor: Any, action: str, document: Any) -> bool:
        return True


class NullDispatcher:
    def dispatch(self, kind: str, document_id: UUID) -> None:
        return None


class NullSubscriptionGateway:
    def update_subscription(
        self,
        subscription_id: str,
        new_quantity: Decimal,
        new_unit_price: Decimal,
    ) -> None:
        return None
