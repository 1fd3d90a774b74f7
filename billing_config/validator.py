"""
Configuration Validator (``billing_config.validator``).

Structural checks on a parsed ``BillingConfig`` before it is handed to
the kernel:

* every document kind has exactly one numbering policy;
* prefixes are upper-case ``[A-Z][A-Z0-9]*`` and unique across kinds
  (numbers are global per kind, a shared prefix would mix two sequences);
* periods are ``year`` or ``month`` and padding is at least 1;
* the default tax rate is within 0..100;
* every permission is ``*``, ``<kind>.*`` or ``<kind>.<action>`` for a
  known kind and action.

Errors block ``get_active_config``; warnings are logged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from billing_config.schema import BillingConfig
from billing_kernel.domain.lifecycle import Action, DocumentKind
from billing_kernel.domain.numbering import PeriodGranularity

_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")

_KINDS = frozenset(k.value for k in DocumentKind)
_ACTIONS = frozenset(a.value for a in Action)
_PERIODS = frozenset(p.value for p in PeriodGranularity)


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: BillingConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()

    _validate_numbering(config, result)
    _validate_document_defaults(config, result)
    _validate_role_grants(config, result)

    return result


def _validate_numbering(config: BillingConfig, result: ConfigValidationResult) -> None:
    seen_kinds: set[str] = set()
    seen_prefixes: dict[str, str] = {}

    for policy in config.numbering:
        if policy.kind not in _KINDS:
            result.add_error(f"numbering: unknown document kind '{policy.kind}'")
            continue
        if policy.kind in seen_kinds:
            result.add_error(f"numbering: duplicate policy for '{policy.kind}'")
        seen_kinds.add(policy.kind)

        if not _PREFIX_RE.match(policy.prefix or ""):
            result.add_error(
                f"numbering.{policy.kind}: prefix '{policy.prefix}' must match [A-Z][A-Z0-9]*"
            )
        elif policy.prefix in seen_prefixes:
            result.add_error(
                f"numbering.{policy.kind}: prefix '{policy.prefix}' already used by "
                f"'{seen_prefixes[policy.prefix]}'"
            )
        else:
            seen_prefixes[policy.prefix] = policy.kind

        if policy.period not in _PERIODS:
            result.add_error(
                f"numbering.{policy.kind}: period must be one of {sorted(_PERIODS)}, "
                f"got '{policy.period}'"
            )
        if policy.padding < 1:
            result.add_error(f"numbering.{policy.kind}: padding must be >= 1")
        elif policy.padding != 3:
            result.add_warning(
                f"numbering.{policy.kind}: padding {policy.padding} differs from the "
                f"3-digit format expected by the accounting export"
            )

    for kind in sorted(_KINDS - seen_kinds):
        result.add_error(f"numbering: no policy for '{kind}'")


def _validate_document_defaults(config: BillingConfig, result: ConfigValidationResult) -> None:
    if not 0 <= config.default_tax_rate <= 100:
        result.add_error(
            f"documents.default_tax_rate must be within 0..100, got {config.default_tax_rate}"
        )
    if config.payment_terms_days == 0:
        result.add_warning("documents.payment_terms_days is 0: invoices fall due on issue")


def _validate_role_grants(config: BillingConfig, result: ConfigValidationResult) -> None:
    for grant in config.role_grants:
        if not grant.permissions:
            result.add_warning(f"roles.{grant.role}: no permissions granted")
        for permission in grant.permissions:
            if permission == "*":
                continue
            kind, _, action = permission.partition(".")
            if kind not in _KINDS:
                result.add_error(
                    f"roles.{grant.role}: permission '{permission}' names unknown kind '{kind}'"
                )
            elif action != "*" and action not in _ACTIONS:
                result.add_error(
                    f"roles.{grant.role}: permission '{permission}' names unknown action "
                    f"'{action}'"
                )
