"""
Permission checks for the test log operations.

Each operation lists the permission classes it accepts. Classes are never
compared by rank; a class not in the table entry is denied.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from testvault.shared.contracts import PermissionClass, Principal
from testvault.shared.errors import AuthorizationError


class Operation(str, Enum):
    INGEST = "ingest"
    LIST = "list"


AUTHORIZATION_TABLE: dict[Operation, frozenset[PermissionClass]] = {
    Operation.INGEST: frozenset({PermissionClass.SYNC}),
    Operation.LIST: frozenset(
        {
            PermissionClass.STANDARD,
            PermissionClass.ADMIN,
            PermissionClass.SYNC,
            PermissionClass.SUPERUSER,
        }
    ),
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""


def authorize(principal: Principal, operation: Operation) -> AccessDecision:
    allowed = AUTHORIZATION_TABLE.get(operation, frozenset())
    if principal.permission in allowed:
        return AccessDecision(allowed=True)
    return AccessDecision(
        allowed=False,
        reason=f"permission '{principal.permission.value}' may not {operation.value} test logs",
    )


def require_permission(principal: Principal, operation: Operation) -> None:
    decision = authorize(principal, operation)
    if not decision.allowed:
        raise AuthorizationError(decision.reason, subcode="permission-denied")
