"""
Configuration Loader (``guardrail_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses it into the frozen dataclasses in
``guardrail_config.schema``.  The single public entry point for runtime
config is ``guardrail_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown policy / intent labels  -> ``ValueError`` from the enum.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

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
from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _tuple(values: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if values is None:
        return default
    return tuple(str(v) for v in values)


def parse_roles(data: dict[str, Any]) -> RoleSets:
    base = RoleSets()
    return RoleSets(
        approvers=_tuple(data.get("approvers"), base.approvers),
        admin_approvers=_tuple(data.get("admin_approvers"), base.admin_approvers),
        guardrail_editors=_tuple(data.get("guardrail_editors"), base.guardrail_editors),
        planners=_tuple(data.get("planners"), base.planners),
        spenders=_tuple(data.get("spenders"), base.spenders),
    )


def parse_provisioning(data: dict[str, Any]) -> ProvisioningDefaults:
    base = ProvisioningDefaults()

    def policy(key: str, default: ApprovalPolicy) -> ApprovalPolicy:
        return ApprovalPolicy(data[key]) if key in data else default

    return ProvisioningDefaults(
        deposit_policy=policy("deposit_policy", base.deposit_policy),
        withdrawal_policy=policy("withdrawal_policy", base.withdrawal_policy),
        spend_policy=policy("spend_policy", base.spend_policy),
        invest_policy=policy("invest_policy", base.invest_policy),
        donate_policy=policy("donate_policy", base.donate_policy),
        allowed_roles_to_initiate=_tuple(
            data.get("allowed_roles_to_initiate"), base.allowed_roles_to_initiate
        ),
        investing_account_kinds=_tuple(
            data.get("investing_account_kinds"), base.investing_account_kinds
        ),
        donation_account_kinds=_tuple(
            data.get("donation_account_kinds"), base.donation_account_kinds
        ),
    )


def parse_fallbacks(data: dict[str, Any]) -> FallbackPolicies:
    by_intent = {
        GuardrailIntent(intent): ApprovalPolicy(policy)
        for intent, policy in (data.get("by_intent") or {}).items()
    }
    return FallbackPolicies(
        default=ApprovalPolicy(data.get("default", ApprovalPolicy.PARENT_REQUIRED.value)),
        by_intent=by_intent,
    )


def parse_investing(data: dict[str, Any]) -> InvestingSettings:
    quotes = tuple(
        QuoteDef(
            symbol=str(q["symbol"]).upper(),
            price_cents=int(q["price_cents"]),
            instrument_kind=str(q["instrument_kind"]),
            currency=str(q.get("currency", "USD")),
        )
        for q in data.get("quotes", [])
    )
    return InvestingSettings(
        position_epsilon=Decimal(str(data.get("position_epsilon", "0.000001"))),
        quotes=quotes,
    )


def parse_provider_queue(data: dict[str, Any]) -> ProviderQueueSettings:
    base = ProviderQueueSettings()
    settings = ProviderQueueSettings(
        max_concurrency=int(data.get("max_concurrency", base.max_concurrency)),
        max_queue_size=int(data.get("max_queue_size", base.max_queue_size)),
        call_timeout_seconds=float(data.get("call_timeout_seconds", base.call_timeout_seconds)),
    )
    if settings.max_concurrency < 1:
        raise ValueError("provider_queue.max_concurrency must be >= 1")
    return settings


def parse_cause(data: dict[str, Any]) -> DonationCause:
    return DonationCause(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_settings(data: dict[str, Any]) -> GuardrailSettings:
    """Parse a full settings mapping into GuardrailSettings."""
    return GuardrailSettings(
        config_id=data["config_id"],
        version=int(data["version"]),
        roles=parse_roles(data.get("roles") or {}),
        provisioning=parse_provisioning(data.get("provisioning") or {}),
        fallbacks=parse_fallbacks(data.get("fallbacks") or {}),
        investing=parse_investing(data.get("investing") or {}),
        provider_queue=parse_provider_queue(data.get("provider_queue") or {}),
        donation_causes=tuple(parse_cause(c) for c in data.get("donation_causes", [])),
        checksum=compute_checksum(data),
    )
