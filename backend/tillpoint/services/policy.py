"""
Boundary policy for every engine operation.

Instead of wrapping each data-access function, operations are written as
plain functions taking (context, settings, ...) and exposed through
`guarded(operation, context)`, which:

1. checks the caller's identity covers the branch (BranchAccessDenied),
2. loads the branch (NotFound),
3. asks the subscription gate about the branch's store (SubscriptionBlocked),
4. builds the immutable BranchSettings and calls the operation.

Both preconditions are testable on their own with a hand-built context.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Callable, Protocol

from ..errors import BranchAccessDenied, SubscriptionBlocked
from .settings_service import BranchSettings, get_branch, settings_from_branch

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)


class SubscriptionGate(Protocol):
    def is_blocked(self, store_id: int) -> bool: ...


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as handed to us by the session layer."""
    user_id: int
    role: str
    branch_ids: frozenset[int]

    def can_access(self, branch_id: int) -> bool:
        return branch_id in self.branch_ids

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class OperationContext:
    identity: Identity
    gate: SubscriptionGate


def require_branch_access(context: OperationContext, branch_id: int) -> None:
    if not context.identity.can_access(branch_id):
        raise BranchAccessDenied(
            f"User {context.identity.user_id} has no access to branch {branch_id}",
            details={"branch_id": branch_id},
        )


def require_subscription(context: OperationContext, store_id: int) -> None:
    if context.gate.is_blocked(store_id):
        reason = getattr(context.gate, "reason", None)
        message = reason(store_id) if callable(reason) else None
        raise SubscriptionBlocked(
            message or "Subscription is blocked",
            details={"store_id": store_id},
        )


def require_role(context: OperationContext, *roles: str) -> None:
    if not context.identity.has_role(*roles):
        raise BranchAccessDenied(
            f"Role {context.identity.role!r} may not perform this operation",
            details={"required_roles": list(roles)},
        )


def guarded(operation: Callable, context: OperationContext) -> Callable:
    """Return `operation` wrapped with the branch-access and subscription preconditions."""
    @wraps(operation)
    def run(branch_id: int, *args, **kwargs):
        require_branch_access(context, branch_id)
        branch = get_branch(branch_id)
        require_subscription(context, branch.store_id)
        settings: BranchSettings = settings_from_branch(branch)
        return operation(context, settings, *args, **kwargs)

    return run
