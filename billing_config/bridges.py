"""
Config -> Kernel Bridges.

Convert a ``BillingConfig`` into kernel inputs.  They live here because
the kernel never imports ``billing_config``.

Usage:
    config = get_active_config()
    settings = build_kernel_settings(config)
    service = InvoiceService(session, settings=settings,
                             authorizer=build_authorizer(config))
"""

from __future__ import annotations

from billing_config.schema import BillingConfig
from billing_kernel.domain.authorization import CapabilityAuthorizer, RoleGrants
from billing_kernel.domain.numbering import NumberingPolicy, PeriodGranularity
from billing_kernel.domain.settings import KernelSettings


def build_role_grants(config: BillingConfig) -> RoleGrants:
    return RoleGrants(
        grants={grant.role: frozenset(grant.permissions) for grant in config.role_grants}
    )


def build_numbering_policies(config: BillingConfig) -> dict[str, NumberingPolicy]:
    return {
        policy.kind: NumberingPolicy(
            kind=policy.kind,
            prefix=policy.prefix,
            period=PeriodGranularity(policy.period),
            padding=policy.padding,
        )
        for policy in config.numbering
    }


def build_kernel_settings(config: BillingConfig) -> KernelSettings:
    return KernelSettings(
        policies=build_numbering_policies(config),
        payment_terms_days=config.payment_terms_days,
        quote_validity_days=config.quote_validity_days,
        default_tax_rate=config.default_tax_rate,
        role_grants=build_role_grants(config),
    )


def build_authorizer(config: BillingConfig) -> CapabilityAuthorizer:
    return CapabilityAuthorizer(build_role_grants(config))
