"""
Kernel settings (``billing_kernel.domain.settings``).

The kernel never reads configuration files.  ``billing_config`` compiles
its YAML into a ``KernelSettings`` and the caller hands it to the
services; without one, the built-in defaults apply.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from billing_kernel.domain.authorization import RoleGrants
from billing_kernel.domain.numbering import DEFAULT_NUMBERING_POLICIES, NumberingPolicy

DEFAULT_PAYMENT_TERMS_DAYS = 30
DEFAULT_QUOTE_VALIDITY_DAYS = 30
DEFAULT_TAX_RATE = Decimal("20.00")


@dataclass(frozen=True)
class KernelSettings:
    policies: Mapping[str, NumberingPolicy] = field(
        default_factory=lambda: dict(DEFAULT_NUMBERING_POLICIES)
    )
    payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS
    quote_validity_days: int = DEFAULT_QUOTE_VALIDITY_DAYS
    default_tax_rate: Decimal = DEFAULT_TAX_RATE
    role_grants: RoleGrants = field(default_factory=RoleGrants)

    def __post_init__(self) -> None:
        if self.payment_terms_days < 0:
            raise ValueError(
                f"payment_terms_days must be >= 0, got {self.payment_terms_days}"
            )
        if self.quote_validity_days < 0:
            raise ValueError(
                f"quote_validity_days must be >= 0, got {self.quote_validity_days}"
            )
        if self.default_tax_rate < 0:
            raise ValueError(f"default_tax_rate must be >= 0, got {self.default_tax_rate}")
