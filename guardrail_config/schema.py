"""
Configuration schema (``guardrail_config.schema``).

Frozen dataclasses produced by the loader.  Nothing here reads files; the
loader turns YAML mappings into these types and ``get_active_config()``
hands them to services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from guardrail_kernel.domain.guardrail import ApprovalPolicy, GuardrailIntent


@dataclass(frozen=True)
class RoleSets:
    """Role groups used by authorization checks."""

    approvers: tuple[str, ...] = ("owner", "admin", "guardian")
    admin_approvers: tuple[str, ...] = ("owner", "admin")
    guardrail_editors: tuple[str, ...] = ("owner", "admin")
    planners: tuple[str, ...] = ("owner", "admin")
    spenders: tuple[str, ...] = ("owner", "admin")


@dataclass(frozen=True)
class ProvisioningDefaults:
    """Policies written by the ensure-guardrail helpers."""

    deposit_policy: ApprovalPolicy = ApprovalPolicy.AUTO
    withdrawal_policy: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED
    spend_policy: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED
    invest_policy: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED
    donate_policy: ApprovalPolicy = ApprovalPolicy.AUTO
    allowed_roles_to_initiate: tuple[str, ...] = ("owner", "admin", "member")
    investing_account_kinds: tuple[str, ...] = ("brokerage", "utma")
    donation_account_kinds: tuple[str, ...] = ("donation",)


@dataclass(frozen=True)
class FallbackPolicies:
    """Policy used when no stored guardrail matches an intent."""

    default: ApprovalPolicy = ApprovalPolicy.PARENT_REQUIRED
    by_intent: dict[GuardrailIntent, ApprovalPolicy] = field(default_factory=dict)

    def for_intent(self, intent: GuardrailIntent) -> ApprovalPolicy:
        return self.by_intent.get(intent, self.default)


@dataclass(frozen=True)
class QuoteDef:
    symbol: str
    price_cents: int
    instrument_kind: str
    currency: str = "USD"


@dataclass(frozen=True)
class InvestingSettings:
    position_epsilon: Decimal = Decimal("0.000001")
    quotes: tuple[QuoteDef, ...] = ()


@dataclass(frozen=True)
class ProviderQueueSettings:
    max_concurrency: int = 2
    max_queue_size: int = 100
    call_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class DonationCause:
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class GuardrailSettings:
    """The complete runtime configuration."""

    config_id: str
    version: int
    roles: RoleSets = field(default_factory=RoleSets)
    provisioning: ProvisioningDefaults = field(default_factory=ProvisioningDefaults)
    fallbacks: FallbackPolicies = field(default_factory=FallbackPolicies)
    investing: InvestingSettings = field(default_factory=InvestingSettings)
    provider_queue: ProviderQueueSettings = field(default_factory=ProviderQueueSettings)
    donation_causes: tuple[DonationCause, ...] = ()
    checksum: str = ""

    def cause(self, cause_id: str) -> DonationCause | None:
        for cause in self.donation_causes:
            if cause.id == cause_id:
                return cause
        return None
