"""
Role-scoped access control.

Everything here except `resolve_principal` is a pure decision over state the
caller already fetched. Routes resolve the principal once per request and pass
it to every check.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from donation_backend.errors import PermissionDenied
from donation_backend.identity import Identity
from donation_backend.store import DirectoryStore, Filter
from shared.firebase_constants import USERS_COLLECTION
from shared.types import Role, parse_role

FORBIDDEN_MESSAGE = "Forbidden: Insufficient permissions"
ADMIN_REQUIRED_MESSAGE = "Admin access required"

# Profile fields that only an Administrator may change.
ADMIN_ONLY_USER_FIELDS = ("role", "status")


@dataclass(frozen=True)
class Principal:
    uid: str
    email: Optional[str]
    role: Optional[Role]

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMINISTRATOR


def resolve_principal(identity: Identity, store: DirectoryStore) -> Principal:
    """Looks up the caller's current role. A missing user record means no role."""
    doc = store.get(USERS_COLLECTION, identity.uid)
    role = parse_role(doc.data.get("role")) if doc else None
    return Principal(uid=identity.uid, email=identity.email, role=role)


def owner_id(resource: dict) -> Optional[str]:
    """The id of the user or organization owning a donation-like resource."""
    return resource.get("userId") or resource.get("orgId")


def can_mutate(principal: Principal, resource: dict) -> bool:
    if principal.role == Role.ADMINISTRATOR:
        return True
    if principal.role == Role.DONOR:
        return resource.get("userId") == principal.uid
    if principal.role == Role.ORGANIZATION:
        return resource.get("orgId") == principal.uid
    return False


def require_owner_or_admin(principal: Principal, resource: dict) -> None:
    if not can_mutate(principal, resource):
        raise PermissionDenied(FORBIDDEN_MESSAGE)


def require_role(principal: Principal, *roles: Role) -> None:
    if principal.role is None or principal.role not in roles:
        if roles == (Role.ADMINISTRATOR,):
            raise PermissionDenied(ADMIN_REQUIRED_MESSAGE)
        raise PermissionDenied(FORBIDDEN_MESSAGE)


def require_dropoff_reassignment(principal: Principal) -> None:
    """
    Only Administrators propose a new drop-off location. The proposal is
    written onto the donor's donation, which nobody else but its owner may
    mutate.
    """
    if not principal.is_admin:
        raise PermissionDenied(ADMIN_REQUIRED_MESSAGE)


def require_self_or_admin(principal: Principal, user_id: str) -> None:
    if principal.uid != user_id and not principal.is_admin:
        raise PermissionDenied(FORBIDDEN_MESSAGE)


def require_profile_update_allowed(
    principal: Principal, user_id: str, updates: dict
) -> None:
    require_self_or_admin(principal, user_id)
    if principal.is_admin:
        return
    if any(key in updates for key in ADMIN_ONLY_USER_FIELDS):
        raise PermissionDenied(ADMIN_REQUIRED_MESSAGE)


def donation_filters(
    principal: Principal, org_id: Optional[str] = None
) -> list[Filter]:
    """
    Listing scope for donations.

    Donors only ever see their own donations. Organizations see all of them,
    optionally narrowed to one organization. Administrators see all.
    """
    if principal.role == Role.DONOR:
        return [Filter("userId", "==", principal.uid)]
    if principal.role == Role.ORGANIZATION:
        return [Filter("orgId", "==", org_id)] if org_id else []
    if principal.role == Role.ADMINISTRATOR:
        return [Filter("orgId", "==", org_id)] if org_id else []
    raise PermissionDenied(FORBIDDEN_MESSAGE)


def ticket_filters(principal: Principal) -> list[Filter]:
    """Support requests and issues: Administrators see all, others their own."""
    if principal.is_admin:
        return []
    return [Filter("userId", "==", principal.uid)]


def require_notification_read(principal: Principal, recipient_id: str) -> None:
    require_self_or_admin(principal, recipient_id)


def require_notification_owner(principal: Principal, notification: dict) -> None:
    """Only the recipient flips `read`/`starred` on a notification."""
    if notification.get("recipientId") != principal.uid:
        raise PermissionDenied(FORBIDDEN_MESSAGE)
