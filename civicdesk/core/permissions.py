"""
Capabilities granted to each role.

Services ask "may this identity do X?" instead of comparing role strings.
"""

from enum import Enum
from typing import Optional

from ..schemas import Identity, Role
from .errors import AuthenticationError, PermissionDeniedError


class Capability(str, Enum):
    CREATE_REPORT = "create_report"
    COMMENT = "comment"
    UPDATE_STATUS = "update_status"
    VIEW_DASHBOARD = "view_dashboard"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CITIZEN: frozenset({
        Capability.CREATE_REPORT,
        Capability.COMMENT,
    }),
    Role.AGENT: frozenset({
        Capability.CREATE_REPORT,
        Capability.COMMENT,
        Capability.UPDATE_STATUS,
        Capability.VIEW_DASHBOARD,
    }),
}

# Messages shown when a capability is missing
DENIED_MESSAGES = {
    Capability.CREATE_REPORT: "You are not allowed to report problems",
    Capability.COMMENT: "You are not allowed to comment",
    Capability.UPDATE_STATUS: "Only municipality agents can update problem status",
    Capability.VIEW_DASHBOARD: "Only municipality agents can view the dashboard",
}


def has_capability(identity: Optional[Identity], capability: Capability) -> bool:
    if identity is None:
        return False
    return capability in ROLE_CAPABILITIES.get(identity.role, frozenset())


def require_capability(identity: Optional[Identity], capability: Capability) -> Identity:
    """
    Ensure an identity may perform an action.

    Raises:
        AuthenticationError: no identity (not logged in)
        PermissionDeniedError: identity lacks the capability
    """
    if identity is None:
        raise AuthenticationError("Not authenticated")
    if not has_capability(identity, capability):
        raise PermissionDeniedError(DENIED_MESSAGES[capability])
    return identity
