"""
Typed Exception Hierarchy for the Guardrail Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection the engine produces must be distinguishable by type and by a
stable machine-readable code, never by message text.  A UI that shows
"waiting for a guardian" must never confuse that with "failed": pending is a
movement STATUS plus a reason code, never an exception.  Everything in this
module is a hard rejection or a recorded failure.

    try:
        submit_order(...)
    except OrderBlockedError as e:
        api_response(code=e.code, reason=e.reason_code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GuardrailKernelError (base)
    |
    +-- ValidationError                 nothing persisted
    |   +-- InvalidAmountError
    |   +-- InvalidQuantityError
    |   +-- AccountNotFoundError
    |   +-- ForeignScopeError
    |   +-- InvalidPeriodKeyError
    |   +-- GoalNotFoundError
    |   +-- BudgetNotFoundError
    |   +-- NodeNotFoundError
    |   +-- MovementNotFoundError
    |   +-- GuardrailNotFoundError
    |   +-- IncomeStreamNotFoundError
    |   +-- UnknownCauseError
    |
    +-- AuthorizationError              raised before any guardrail evaluation
    |   +-- OrganizationAccessError
    |   +-- InsufficientRoleError
    |
    +-- PolicyError
    |   +-- OrderBlockedError
    |   +-- RoleNotAllowedToInitiateError
    |
    +-- LifecycleError
    |   +-- InvalidMovementTransitionError
    |   +-- MovementAlreadyResolvedError
    |
    +-- ExecutionError                  recorded on the movement as failed
    |   +-- InsufficientQuantityError
    |   +-- QuoteUnavailableError
    |   +-- ProviderQueueRejectedError
    |   +-- ProviderTimeoutError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|---------------------------------------
Validation      | INVALID_AMOUNT               | Amount is not a positive integer
                | INVALID_QUANTITY             | Order quantity <= 0
                | ACCOUNT_NOT_FOUND            | Account id unknown
                | FOREIGN_SCOPE                | Referenced record belongs to another org
                | INVALID_PERIOD_KEY           | Budget period key is not YYYY-MM
                | MOVEMENT_NOT_FOUND           | Movement id unknown
----------------|------------------------------|---------------------------------------
Authorization   | ORGANIZATION_ACCESS_DENIED   | Actor session is for another org
                | INSUFFICIENT_ROLE            | Actor role not in required set
----------------|------------------------------|---------------------------------------
Policy          | ORDER_BLOCKED                | Symbol blocklist / instrument allowlist
                | ROLE_NOT_ALLOWED_TO_INITIATE | Guardrail restricts initiating roles
----------------|------------------------------|---------------------------------------
Lifecycle       | INVALID_MOVEMENT_TRANSITION  | Transition not in MOVEMENT_TRANSITIONS
                | MOVEMENT_ALREADY_RESOLVED    | Movement already terminal
----------------|------------------------------|---------------------------------------
Execution       | INSUFFICIENT_QUANTITY        | Sell exceeds held quantity
                | QUOTE_UNAVAILABLE            | Provider returned no quote
                | PROVIDER_QUEUE_REJECTED      | Provider queue full or stopped
----------------|------------------------------|---------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT     | Position version changed under us
Immutability    | IMMUTABILITY_VIOLATION       | Update/delete of an append-only record
"""


class GuardrailKernelError(Exception):
    """
    Base exception for all guardrail kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "GUARDRAIL_KERNEL_ERROR"


# Validation exceptions


class ValidationError(GuardrailKernelError):
    """Base exception for rejected input.  Nothing is persisted."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Monetary amount is not a positive integer of minor units."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount_cents: object, reason: str = "Amount must be greater than zero"):
        self.amount_cents = amount_cents
        self.reason = reason
        super().__init__(f"{reason}: {amount_cents!r}")


class InvalidQuantityError(ValidationError):
    """Order quantity is not positive."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object):
        self.quantity = str(quantity)
        super().__init__(f"Quantity must be greater than zero: {quantity}")


class AccountNotFoundError(ValidationError):
    """Account id does not exist."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class ForeignScopeError(ValidationError):
    """A referenced record belongs to a different organization."""

    code: str = "FOREIGN_SCOPE"

    def __init__(self, entity_type: str, entity_id: str, organization_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.organization_id = organization_id
        super().__init__(
            f"{entity_type} {entity_id} does not belong to organization {organization_id}"
        )


class InvalidPeriodKeyError(ValidationError):
    """Budget period key is not a valid YYYY-MM string."""

    code: str = "INVALID_PERIOD_KEY"

    def __init__(self, period_key: str):
        self.period_key = period_key
        super().__init__(f"Invalid period key: {period_key!r}")


class GoalNotFoundError(ValidationError):
    """Savings goal id does not exist."""

    code: str = "GOAL_NOT_FOUND"

    def __init__(self, goal_id: str):
        self.goal_id = goal_id
        super().__init__(f"Goal not found: {goal_id}")


class BudgetNotFoundError(ValidationError):
    """Budget id does not exist."""

    code: str = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: str):
        self.budget_id = budget_id
        super().__init__(f"Budget not found: {budget_id}")


class NodeNotFoundError(ValidationError):
    """Money-map node does not exist or is the wrong kind."""

    code: str = "NODE_NOT_FOUND"

    def __init__(self, node_id: str, reason: str = "not found"):
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Money map node {node_id}: {reason}")


class MovementNotFoundError(ValidationError):
    """Money-movement request id does not exist."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = movement_id
        super().__init__(f"Movement not found: {movement_id}")


class GuardrailNotFoundError(ValidationError):
    """Guardrail id does not exist."""

    code: str = "GUARDRAIL_NOT_FOUND"

    def __init__(self, guardrail_id: str):
        self.guardrail_id = guardrail_id
        super().__init__(f"Guardrail not found: {guardrail_id}")


class IncomeStreamNotFoundError(ValidationError):
    """Income stream id does not exist."""

    code: str = "INCOME_STREAM_NOT_FOUND"

    def __init__(self, stream_id: str):
        self.stream_id = stream_id
        super().__init__(f"Income stream not found: {stream_id}")


class UnknownCauseError(ValidationError):
    """Donation cause is not in the configured catalog."""

    code: str = "UNKNOWN_CAUSE"

    def __init__(self, cause_id: str):
        self.cause_id = cause_id
        super().__init__(f"Unknown donation cause: {cause_id}")


# Authorization exceptions


class AuthorizationError(GuardrailKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class OrganizationAccessError(AuthorizationError):
    """Actor session does not belong to the requested organization."""

    code: str = "ORGANIZATION_ACCESS_DENIED"

    def __init__(self, actor_id: str, organization_id: str):
        self.actor_id = actor_id
        self.organization_id = organization_id
        super().__init__(f"Access denied for organization {organization_id}")


class InsufficientRoleError(AuthorizationError):
    """Actor role is not permitted to perform the operation."""

    code: str = "INSUFFICIENT_ROLE"

    def __init__(self, actor_id: str, role: str, required_roles: tuple[str, ...], action: str):
        self.actor_id = actor_id
        self.role = role
        self.required_roles = required_roles
        self.action = action
        super().__init__(
            f"Insufficient permissions: role '{role}' cannot {action} "
            f"(requires one of {', '.join(required_roles)})"
        )


# Policy exceptions


class PolicyError(GuardrailKernelError):
    """Base exception for guardrail policy vetoes."""

    code: str = "POLICY_ERROR"


class OrderBlockedError(PolicyError):
    """Investment order was vetoed by a blocklist or allowlist."""

    code: str = "ORDER_BLOCKED"

    def __init__(self, symbol: str, reason_code: str, guardrail_id: str | None = None):
        self.symbol = symbol
        self.reason_code = reason_code
        self.guardrail_id = guardrail_id
        super().__init__(f"Order blocked: {reason_code}")


class RoleNotAllowedToInitiateError(PolicyError):
    """Resolved guardrail does not allow the actor's role to initiate."""

    code: str = "ROLE_NOT_ALLOWED_TO_INITIATE"

    def __init__(self, role: str, guardrail_id: str, allowed_roles: tuple[str, ...]):
        self.role = role
        self.guardrail_id = guardrail_id
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role '{role}' may not initiate under guardrail {guardrail_id}"
        )


# Lifecycle exceptions


class LifecycleError(GuardrailKernelError):
    """Base exception for movement lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidMovementTransitionError(LifecycleError):
    """Requested status change is not a legal transition."""

    code: str = "INVALID_MOVEMENT_TRANSITION"

    def __init__(self, movement_id: str, from_status: str, to_status: str):
        self.movement_id = movement_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for movement {movement_id}: {from_status} -> {to_status}"
        )


class MovementAlreadyResolvedError(LifecycleError):
    """Movement is already in a terminal status."""

    code: str = "MOVEMENT_ALREADY_RESOLVED"

    def __init__(self, movement_id: str, status: str):
        self.movement_id = movement_id
        self.status = status
        super().__init__(f"Movement {movement_id} is already {status}")


# Execution exceptions


class ExecutionError(GuardrailKernelError):
    """Base exception for execution side-effect failures."""

    code: str = "EXECUTION_ERROR"


class InsufficientQuantityError(ExecutionError):
    """Sell quantity exceeds the held position."""

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, symbol: str, held: str, requested: str):
        self.symbol = symbol
        self.held = held
        self.requested = requested
        super().__init__(
            f"insufficient_quantity: holding {held} {symbol}, requested {requested}"
        )


class QuoteUnavailableError(ExecutionError):
    """No market quote is available for the symbol."""

    code: str = "QUOTE_UNAVAILABLE"

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Quote unavailable for symbol {symbol}")


class ProviderQueueRejectedError(ExecutionError):
    """Provider queue refused the call (stopped or full)."""

    code: str = "PROVIDER_QUEUE_REJECTED"

    def __init__(self, provider_id: str, reason: str):
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"Provider {provider_id} rejected call: {reason}")


class ProviderTimeoutError(ExecutionError):
    """Provider call did not finish within the configured timeout."""

    code: str = "PROVIDER_TIMEOUT"

    def __init__(self, provider_id: str, timeout_seconds: float):
        self.provider_id = provider_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"provider_timeout: {provider_id} did not respond within {timeout_seconds}s")


# Concurrency exceptions


class ConcurrencyError(GuardrailKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(GuardrailKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
