"""
Typed Exception Hierarchy for the Governance Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval and playbook callers must react to failures precisely: a duplicate
vote is reported back to the voter, a dependency failure is shown on the
step, a lock conflict is retried. Parsing message strings for that is
fragile, so every failure the kernel produces is:
  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA (ids, states) as attributes

Example - WRONG way:
    try:
        service.vote(tenant_id, request_id, voter, VoteDecision.APPROVE)
    except Exception as e:
        if "already voted" in str(e):
            ...

Example - RIGHT way:
    try:
        service.vote(tenant_id, request_id, voter, VoteDecision.APPROVE)
    except DuplicateVoteError as e:
        api_response(code=e.code, request_id=e.request_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from GovernanceError:

    GovernanceError (base)
    |
    +-- ConfigurationError
    |   +-- PolicyNotFoundError
    |   +-- TemplateNotFoundError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- StepNotFoundError
    |   +-- ChecklistItemNotFoundError
    |
    +-- InvalidStateError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |   +-- SelfApprovalForbiddenError
    |
    +-- VotingError
    |   +-- DuplicateVoteError
    |
    +-- PayloadError
    |   +-- PayloadTypeMismatchError
    |
    +-- DependencyError
    |   +-- DependencyNotSatisfiedError
    |   +-- DependencyCycleError
    |   +-- UnknownDependencyError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- PersistenceError
        +-- StoreUnavailableError

===============================================================================
HANDLING GUIDANCE
===============================================================================

1. VALIDATION ERRORS (InvalidStateError, AuthorizationError, VotingError,
   PayloadError, DependencyNotSatisfiedError): raised before any write.
   Report to the caller; retrying the same call gives the same answer.

2. CONCURRENCY ERRORS: services already re-read and re-validate a bounded
   number of times. An OptimisticLockError reaching the caller means the
   entity is under heavy contention; the caller may retry.

3. PERSISTENCE ERRORS: the store was unreachable. Nothing was written.
   Safe to retry.

4. CONFIGURATION ERRORS: the catalogue does not know the requested policy
   or template. Fix the caller or the catalogue.

===============================================================================
"""

from typing import Iterable


class GovernanceError(Exception):
    """
    Base exception for all governance kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "GOVERNANCE_ERROR"


# Configuration-related exceptions


class ConfigurationError(GovernanceError):
    """Base exception for catalogue lookup errors."""

    code: str = "CONFIGURATION_ERROR"


class PolicyNotFoundError(ConfigurationError):
    """No approval policy is registered for the operation type."""

    code: str = "POLICY_NOT_FOUND"

    def __init__(self, approval_type: str):
        self.approval_type = approval_type
        super().__init__(f"No approval policy for operation type: {approval_type}")


class TemplateNotFoundError(ConfigurationError):
    """No playbook template is registered under the id."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Playbook template not found: {template_id}")


# Lookup exceptions


class NotFoundError(GovernanceError):
    """Base exception for unknown entity ids."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Approval request with given ID was not found in the tenant."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class InstanceNotFoundError(NotFoundError):
    """Playbook instance with given ID was not found in the tenant."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Playbook instance not found: {instance_id}")


class StepNotFoundError(NotFoundError):
    """Step id does not belong to the playbook instance."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, instance_id: str, step_id: str):
        self.instance_id = instance_id
        self.step_id = step_id
        super().__init__(f"Step {step_id} not found in playbook instance {instance_id}")


class ChecklistItemNotFoundError(NotFoundError):
    """Checklist index is outside the step's checklist."""

    code: str = "CHECKLIST_ITEM_NOT_FOUND"

    def __init__(self, instance_id: str, step_id: str, index: int):
        self.instance_id = instance_id
        self.step_id = step_id
        self.index = index
        super().__init__(
            f"Step {step_id} of playbook instance {instance_id} has no checklist item {index}"
        )


# State machine exceptions


class InvalidStateError(GovernanceError):
    """
    Operation is not allowed in the entity's current state.

    Raised for votes on finalized requests, step transitions outside the
    step state machine, and lifecycle changes on closed instances.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        attempted: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {entity_type} {entity_id} "
            f"in state {current_state}"
        )


# Authorization exceptions


class AuthorizationError(GovernanceError):
    """Base exception for actor permission failures."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor lacks the capability the operation requires."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, required_capability: str, entity_id: str):
        self.actor_id = actor_id
        self.required_capability = required_capability
        self.entity_id = entity_id
        super().__init__(
            f"Actor {actor_id} lacks capability {required_capability} "
            f"for {entity_id}"
        )


class SelfApprovalForbiddenError(AuthorizationError):
    """Requestor attempted to vote on their own request."""

    code: str = "SELF_APPROVAL_FORBIDDEN"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Requestor {actor_id} may not vote on their own request {request_id}"
        )


# Voting exceptions


class VotingError(GovernanceError):
    """Base exception for vote integrity errors."""

    code: str = "VOTING_ERROR"


class DuplicateVoteError(VotingError):
    """Voter already cast a vote on this request."""

    code: str = "DUPLICATE_VOTE"

    def __init__(self, request_id: str, voter_id: str):
        self.request_id = request_id
        self.voter_id = voter_id
        super().__init__(f"Voter {voter_id} already voted on request {request_id}")


# Payload exceptions


class PayloadError(GovernanceError):
    """Base exception for operation payload errors."""

    code: str = "PAYLOAD_ERROR"


class PayloadTypeMismatchError(PayloadError):
    """Payload kind does not match what the operation domain accepts."""

    code: str = "PAYLOAD_TYPE_MISMATCH"

    def __init__(self, expected_kind: str, received_kind: str, context: str):
        self.expected_kind = expected_kind
        self.received_kind = received_kind
        self.context = context
        super().__init__(
            f"{context} requires payload kind {expected_kind}, "
            f"received {received_kind}"
        )


# Dependency exceptions


class DependencyError(GovernanceError):
    """Base exception for step dependency errors."""

    code: str = "DEPENDENCY_ERROR"


class DependencyNotSatisfiedError(DependencyError):
    """Step cannot start because prerequisite steps are not done."""

    code: str = "DEPENDENCY_NOT_SATISFIED"

    def __init__(self, step_id: str, unsatisfied: Iterable[str]):
        self.step_id = step_id
        self.unsatisfied = tuple(unsatisfied)
        super().__init__(
            f"Step {step_id} is blocked by unfinished steps: "
            f"{', '.join(self.unsatisfied)}"
        )


class DependencyCycleError(DependencyError):
    """Step dependency graph contains a cycle."""

    code: str = "DEPENDENCY_CYCLE"

    def __init__(self, template_id: str, cycle: Iterable[str]):
        self.template_id = template_id
        self.cycle = tuple(cycle)
        super().__init__(
            f"Template {template_id} has a dependency cycle: "
            f"{' -> '.join(self.cycle)}"
        )


class UnknownDependencyError(DependencyError):
    """Step depends on a step id the template does not define."""

    code: str = "UNKNOWN_DEPENDENCY"

    def __init__(self, template_id: str, step_id: str, missing: str):
        self.template_id = template_id
        self.step_id = step_id
        self.missing = missing
        super().__init__(
            f"Template {template_id} step {step_id} depends on unknown step {missing}"
        )


# Concurrency-related exceptions


class ConcurrencyError(GovernanceError):
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


# Persistence exceptions


class PersistenceError(GovernanceError):
    """Base exception for storage faults."""

    code: str = "PERSISTENCE_ERROR"


class StoreUnavailableError(PersistenceError):
    """The backing store could not be reached; nothing was written."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store unavailable during {operation}: {detail}")
