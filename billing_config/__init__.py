"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It loads the YAML file (the bundled ``defaults.yaml`` unless
    a path is given), validates it and returns a frozen ``BillingConfig``.
    ``billing_config.bridges`` turns it into ``KernelSettings`` and an
    authorizer.

Architecture position:
    Configuration.  Sits above ``billing_kernel``; the kernel MUST NEVER
    import from ``billing_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``KeyError`` -- a required section or key is missing.
    - ``ValueError`` -- a value is malformed or validation failed.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the config id, version and checksum, tying issued numbers back to the
    configuration that produced them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import compute_checksum, load_yaml_file, parse_config
from billing_config.schema import BillingConfig, NumberingPolicyDef, RoleGrantDef
from billing_config.validator import validate_configuration

_logger = logging.getLogger("billing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> BillingConfig:
    """
    Load, validate and return the billing configuration.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    data = load_yaml_file(path)
    config = parse_config(data, checksum=compute_checksum(data))

    validation = validate_configuration(config)
    for warning in validation.warnings:
        _logger.warning("billing_config_warning", extra={"detail": warning})
    if not validation.is_valid:
        raise ValueError(
            f"Configuration validation failed for {path}:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "numbering": {p.kind: f"{p.prefix}/{p.period}" for p in config.numbering},
            "role_count": len(config.role_grants),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "NumberingPolicyDef",
    "RoleGrantDef",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
