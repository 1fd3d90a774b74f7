"""
BillingConfig schema.

The reviewable, version-controlled source of billing configuration,
parsed from YAML by the loader into these frozen types:

  NumberingPolicyDef   one per document kind (prefix, period, padding)
  RoleGrantDef         role name -> granted ``<kind>.<action>`` permissions
  BillingConfig        the whole set, with the checksum of its source
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class NumberingPolicyDef:
    """How one document kind is numbered (``FACT`` + ``year`` -> FACT-2025-001)."""

    kind: str
    prefix: str
    period: str  # "year" or "month"
    padding: int = 3


@dataclass(frozen=True)
class RoleGrantDef:
    """Permissions granted to one role."""

    role: str
    permissions: tuple[str, ...]


@dataclass(frozen=True)
class BillingConfig:
    """
    Validated billing configuration.

    Contract:
        Frozen.  ``checksum`` is the SHA-256 of the canonical JSON of the
        parsed YAML; the same file always yields the same checksum.
    """

    config_id: str
    version: int
    numbering: tuple[NumberingPolicyDef, ...]
    payment_terms_days: int
    quote_validity_days: int
    default_tax_rate: Decimal
    role_grants: tuple[RoleGrantDef, ...] = ()
    checksum: str = ""

    def policy_for(self, kind: str) -> NumberingPolicyDef:
        for policy in self.numbering:
            if policy.kind == kind:
                return policy
        raise KeyError(f"No numbering policy configured for '{kind}'")

    def permissions_for(self, role: str) -> tuple[str, ...]:
        for grant in self.role_grants:
            if grant.role == role:
                return grant.permissions
        return ()
