"""
Principals and role-based access guards.

Every service operation receives an explicit principal; nothing here reads
request-global state. The HTTP layer builds principals from the bearer token.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from procureflow.core.errors import AuthenticationError, AuthorizationError
from procureflow.core.security import bearer_scheme, decode_token
from procureflow.db.session import get_db


class PrincipalKind(str, Enum):
    USER = "user"
    VENDOR = "vendor"


class Role(str, Enum):
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.USER: 0,
    Role.MANAGER: 1,
    Role.ADMIN: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


@dataclass(frozen=True)
class UserPrincipal:
    """An organization member."""
    id: str
    role: Role
    organization_id: str
    email: Optional[str] = None

    kind = PrincipalKind.USER

    @property
    def is_reviewer(self) -> bool:
        return has_permission(self.role, Role.MANAGER)


@dataclass(frozen=True)
class VendorPrincipal:
    """An independent vendor account."""
    id: str
    email: Optional[str] = None

    kind = PrincipalKind.VENDOR


Principal = Union[UserPrincipal, VendorPrincipal]


# ============= GUARDS =============

def require_vendor(principal: Principal, action: str) -> VendorPrincipal:
    if not isinstance(principal, VendorPrincipal):
        raise AuthorizationError(f"Only vendors can {action}")
    return principal


def require_org_user(principal: Principal, action: str) -> UserPrincipal:
    if not isinstance(principal, UserPrincipal):
        raise AuthorizationError(f"Vendors cannot {action}")
    return principal


def require_role(principal: Principal, required_role: Role, action: str) -> UserPrincipal:
    user = require_org_user(principal, action)
    if not has_permission(user.role, required_role):
        raise AuthorizationError(
            f"Not authorized to {action}. Required role: {required_role.value}"
        )
    return user


def require_reviewer(principal: Principal, action: str) -> UserPrincipal:
    """Managers and admins act as reviewers."""
    return require_role(principal, Role.MANAGER, action)


def require_same_org(principal: UserPrincipal, organization_id: str, action: str) -> None:
    if principal.organization_id != organization_id:
        raise AuthorizationError(f"Not authorized to {action} for another organization")


def actor_fields(principal: Principal) -> Dict[str, Any]:
    """Audit columns describing who acted."""
    if isinstance(principal, UserPrincipal):
        return {
            "actor_id": principal.id,
            "actor_kind": principal.kind.value,
            "organization_id": principal.organization_id,
        }
    return {
        "actor_id": principal.id,
        "actor_kind": principal.kind.value,
        "organization_id": None,
    }


# ============= TOKEN RESOLUTION =============

def principal_from_claims(payload: Dict[str, Any]) -> Principal:
    """Build a principal from JWT claims (or a serialized job payload)."""
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid token: missing subject")

    kind = payload.get("kind", PrincipalKind.USER.value)
    if kind == PrincipalKind.VENDOR.value:
        return VendorPrincipal(id=str(subject), email=payload.get("email"))

    org_id = payload.get("org_id")
    role = payload.get("role")
    if not org_id or role not in {r.value for r in Role}:
        raise AuthenticationError("Invalid token: missing organization or role")
    return UserPrincipal(
        id=str(subject),
        role=Role(role),
        organization_id=str(org_id),
        email=payload.get("email"),
    )


def principal_to_claims(principal: Principal) -> Dict[str, Any]:
    claims = {"sub": principal.id, "kind": principal.kind.value, "email": principal.email}
    if isinstance(principal, UserPrincipal):
        claims["role"] = principal.role.value
        claims["org_id"] = principal.organization_id
    return claims


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """
    FastAPI dependency resolving the caller.

    The token only identifies the account; everything else is read from
    the database on every request.
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    payload = decode_token(credentials.credentials)

    from procureflow.services.accounts import resolve_principal
    return resolve_principal(db, principal_from_claims(payload))
