"""
guardrail_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way services obtain settings: role
    groups, provisioning defaults, fallback policies, investing quotes and
    epsilon, provider-queue sizing, and the donation cause catalog.

Architecture position:
    Configuration.  Sits above ``guardrail_kernel`` and below
    ``guardrail_services``.  The kernel MUST NEVER import from this package;
    services translate settings into plain constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- configured path does not exist.
    - ``ValueError`` / ``KeyError`` -- schema violations.

Audit relevance:
    Every successful call logs ``guardrail_config_loaded`` with the config
    id, version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from guardrail_config.loader import load_yaml_file, parse_settings
from guardrail_config.schema import (
    DonationCause,
    FallbackPolicies,
    GuardrailSettings,
    InvestingSettings,
    ProviderQueueSettings,
    ProvisioningDefaults,
    QuoteDef,
    RoleSets,
)

_logger = logging.getLogger("guardrail_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "GUARDRAIL_CONFIG_PATH"


def get_active_config(config_path: Path | None = None) -> GuardrailSettings:
    """
    The ONLY public configuration entrypoint.

    Resolution order: explicit ``config_path``, then the
    ``GUARDRAIL_CONFIG_PATH`` environment variable, then the packaged
    ``defaults.yaml``.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        config_path = Path(env_path) if env_path else _DEFAULT_CONFIG_PATH

    settings = parse_settings(load_yaml_file(config_path))

    _logger.info(
        "guardrail_config_loaded",
        extra={
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "quote_count": len(settings.investing.quotes),
            "cause_count": len(settings.donation_causes),
        },
    )
    return settings


__all__ = [
    "CONFIG_PATH_ENV",
    "DonationCause",
    "FallbackPolicies",
    "GuardrailSettings",
    "InvestingSettings",
    "ProviderQueueSettings",
    "ProvisioningDefaults",
    "QuoteDef",
    "RoleSets",
    "get_active_config",
]
