"""Kernel services: guardrail store, provisioning, lifecycle, event journal."""

from guardrail_kernel.services.event_journal import EventJournal, entity_ref
from guardrail_kernel.services.guardrail_store import GuardrailStore
from guardrail_kernel.services.lifecycle import MovementLifecycle
from guardrail_kernel.services.provisioning import (
    GuardrailDefaults,
    GuardrailProvisioner,
    ProvisionResult,
)

__all__ = [
    "EventJournal",
    "GuardrailDefaults",
    "GuardrailProvisioner",
    "GuardrailStore",
    "MovementLifecycle",
    "ProvisionResult",
    "entity_ref",
]
