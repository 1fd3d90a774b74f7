"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads the billing YAML file and parses it into the frozen
``billing_config.schema`` types.  Runtime callers go through
``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys never get a silent default.
* ``compute_checksum`` is deterministic for the same parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values (negative terms, non-numeric tax rate)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfig, NumberingPolicyDef, RoleGrantDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a decimal from YAML.  Floats go through ``str`` so 20.0 stays 20.0."""
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name}: expected a number, got {value!r}") from None


def parse_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name}: expected an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{field_name}: must be >= 0, got {value}")
    return value


def parse_numbering_policy(kind: str, data: dict[str, Any]) -> NumberingPolicyDef:
    """
    Parse the numbering policy of one kind.

    Raises:
        KeyError: if ``prefix`` or ``period`` is missing.
    """
    return NumberingPolicyDef(
        kind=kind,
        prefix=data["prefix"],
        period=data["period"],
        padding=parse_non_negative_int(data.get("padding", 3), f"numbering.{kind}.padding"),
    )


def parse_role_grant(role: str, permissions: Any) -> RoleGrantDef:
    if isinstance(permissions, str):
        permissions = [permissions]
    if not isinstance(permissions, list):
        raise ValueError(f"roles.{role}: expected a list of permissions, got {permissions!r}")
    return RoleGrantDef(role=role, permissions=tuple(str(p) for p in permissions))


def parse_config(data: dict[str, Any], checksum: str = "") -> BillingConfig:
    """
    Parse a ``BillingConfig`` from the YAML mapping.

    Raises:
        KeyError: if a required section or key is missing.
        ValueError: if a value has the wrong type or range.
    """
    numbering_data = data["numbering"]
    if not isinstance(numbering_data, dict) or not numbering_data:
        raise ValueError("numbering: expected a non-empty mapping of kind -> policy")

    documents = data["documents"]

    return BillingConfig(
        config_id=data["config_id"],
        version=parse_non_negative_int(data.get("version", 1), "version"),
        numbering=tuple(
            parse_numbering_policy(kind, policy) for kind, policy in numbering_data.items()
        ),
        payment_terms_days=parse_non_negative_int(
            documents["payment_terms_days"], "documents.payment_terms_days"
        ),
        quote_validity_days=parse_non_negative_int(
            documents["quote_validity_days"], "documents.quote_validity_days"
        ),
        default_tax_rate=parse_decimal(documents["default_tax_rate"], "documents.default_tax_rate"),
        role_grants=tuple(
            parse_role_grant(role, perms) for role, perms in (data.get("roles") or {}).items()
        ),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 checksum of the canonical JSON serialization of ``data``.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
