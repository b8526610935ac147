"""
Organization registration, vendor registration, user administration and
credential checks for both principal kinds.
"""
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from procureflow.core.errors import (
    AuthenticationError, AuthorizationError, ConflictError, ValidationError,
)
from procureflow.core.logging import get_logger
from procureflow.core.rbac import (
    Principal, PrincipalKind, Role, UserPrincipal, VendorPrincipal,
    principal_to_claims, require_org_user, require_role,
)
from procureflow.core.security import create_access_token, get_password_hash
from procureflow.db.models import Organization, User, Vendor, generate_id
from procureflow.services.audit import record_audit
from procureflow.services.persistence import apply_pagination, get_or_404, unit_of_work

logger = get_logger(__name__)

Account = Union[User, Vendor]

USER_ADMIN_FIELDS = frozenset({
    "first_name", "last_name", "phone", "department", "role", "manager_id",
    "permissions", "is_active",
})

USER_PROFILE_FIELDS = frozenset({"first_name", "last_name", "phone", "department"})

VENDOR_PROFILE_FIELDS = frozenset({
    "first_name", "last_name", "company_name", "phone", "specialization", "location",
    "description", "certifications", "portfolio", "preferences",
})


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def principal_for(account: Account) -> Principal:
    if isinstance(account, Vendor):
        return VendorPrincipal(id=account.id, email=account.email)
    return UserPrincipal(
        id=account.id,
        role=Role(account.role),
        organization_id=account.organization_id,
        email=account.email,
    )


def issue_token(account: Account) -> str:
    return create_access_token(principal_to_claims(principal_for(account)))


def resolve_principal(db: Session, claimed: Principal) -> Principal:
    """
    Re-read the account behind a token or queued job.

    Role and organization always come from the stored row, so a
    deactivation or demotion takes effect on the very next request.
    """
    model = Vendor if claimed.kind == PrincipalKind.VENDOR else User
    account = db.get(model, claimed.id)
    if account is None:
        raise AuthenticationError("Account no longer exists")
    if not account.is_active:
        raise AuthenticationError("Account is deactivated")
    if isinstance(account, User) and not account.organization.is_active:
        raise AuthenticationError("Organization is deactivated")
    return principal_for(account)


def _ensure_user_email_free(db: Session, email: str) -> None:
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("A user with this email already exists", {"email": email})


def validate_manager(db: Session, organization_id: str, manager_id: str) -> User:
    """Manager must exist in the same organization with a reviewing role."""
    manager = db.query(User).filter(User.id == manager_id).first()
    if not manager:
        raise ValidationError("Manager not found", {"manager_id": manager_id})
    if manager.organization_id != organization_id:
        raise ConflictError(
            "Manager belongs to a different organization", {"manager_id": manager_id}
        )
    if manager.role not in (Role.MANAGER.value, Role.ADMIN.value):
        raise ConflictError("Assigned manager lacks manager or admin role", {"manager_id": manager_id})
    if not manager.is_active:
        raise ValidationError("Assigned manager is inactive", {"manager_id": manager_id})
    return manager


# ============= REGISTRATION =============

def register_organization(
    db: Session, org_fields: Dict[str, Any], admin_fields: Dict[str, Any]
) -> Tuple[Organization, User]:
    """
    Create an organization together with its first admin.

    The organization insert, the admin insert and the admin_id back-patch
    share one transaction; any failure leaves nothing behind.
    """
    name = org_fields["name"].strip()
    email = _normalize_email(admin_fields["email"])

    if db.query(Organization.id).filter(func.lower(Organization.name) == name.lower()).first():
        raise ConflictError("Organization with this name already exists", {"name": name})
    _ensure_user_email_free(db, email)

    org_id = generate_id()
    admin_id = generate_id()
    try:
        with unit_of_work(db):
            org = Organization(
                id=org_id,
                name=name,
                industry=org_fields["industry"],
                description=org_fields.get("description"),
                address=org_fields.get("address") or {},
                contact=org_fields.get("contact") or {},
                registration_number=org_fields.get("registration_number"),
                tax_id=org_fields.get("tax_id"),
                settings=org_fields.get("settings") or {
                    "auto_approval_limit": 1000,
                    "require_dual_approval": False,
                },
            )
            db.add(org)
            db.flush()

            admin = User(
                id=admin_id,
                email=email,
                hashed_password=get_password_hash(admin_fields["password"]),
                first_name=admin_fields["first_name"],
                last_name=admin_fields["last_name"],
                phone=admin_fields.get("phone"),
                role=Role.ADMIN.value,
                organization_id=org_id,
                permissions=[
                    "approve_requests", "create_market_requests", "manage_users",
                    "view_analytics", "manage_organization", "approve_high_value",
                ],
            )
            db.add(admin)
            db.flush()

            org.admin_id = admin_id
            record_audit(
                db, principal_for(admin), "register_organization", "organization", org_id,
                details={"name": name},
            )
    except Exception as e:
        logger.error(f"Organization registration rolled back for '{name}': {e}")
        raise

    return org, admin


def register_vendor(db: Session, fields: Dict[str, Any]) -> Vendor:
    email = _normalize_email(fields["email"])
    if db.query(Vendor.id).filter(Vendor.email == email).first():
        raise ConflictError("A vendor with this email already exists", {"email": email})

    vendor = Vendor(
        email=email,
        hashed_password=get_password_hash(fields["password"]),
        first_name=fields["first_name"],
        last_name=fields["last_name"],
        company_name=fields.get("company_name"),
        phone=fields.get("phone"),
        specialization=fields.get("specialization") or [],
        location=fields.get("location") or {},
    )
    with unit_of_work(db):
        db.add(vendor)
        db.flush()
        record_audit(db, principal_for(vendor), "register_vendor", "vendor", vendor.id)
    return vendor


# ============= USER ADMINISTRATION =============

def create_user(db: Session, principal: Principal, fields: Dict[str, Any]) -> User:
    """Admins add members to their own organization."""
    admin = require_role(principal, Role.ADMIN, "create users")
    email = _normalize_email(fields["email"])
    _ensure_user_email_free(db, email)

    role = fields.get("role") or Role.USER.value
    manager_id = fields.get("manager_id")
    if manager_id:
        validate_manager(db, admin.organization_id, manager_id)

    user = User(
        email=email,
        hashed_password=get_password_hash(fields["password"]),
        first_name=fields["first_name"],
        last_name=fields["last_name"],
        phone=fields.get("phone"),
        department=fields.get("department"),
        role=Role(role).value,
        organization_id=admin.organization_id,
        manager_id=manager_id,
        permissions=fields.get("permissions") or [],
    )
    with unit_of_work(db):
        db.add(user)
        db.flush()
        record_audit(
            db, admin, "create_user", "user", user.id,
            details={"email": email, "role": user.role},
        )
    return user


def get_user(db: Session, principal: Principal, user_id: str) -> User:
    member = require_org_user(principal, "view users")
    user = get_or_404(db, User, user_id, "User")
    if user.organization_id != member.organization_id:
        raise AuthorizationError("Not authorized to view users of another organization")
    if member.role == Role.USER and user.id != member.id:
        raise AuthorizationError("Not authorized to view other users")
    return user


def list_users(
    db: Session,
    principal: Principal,
    role: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[User]:
    member = require_role(principal, Role.MANAGER, "list users")
    query = db.query(User).filter(User.organization_id == member.organization_id)
    if role:
        query = query.filter(User.role == role)
    return apply_pagination(query.order_by(User.last_name, User.first_name), skip, limit).all()


def update_user(db: Session, principal: Principal, user_id: str, fields: Dict[str, Any]) -> User:
    admin = require_role(principal, Role.ADMIN, "update users")
    user = get_or_404(db, User, user_id, "User")
    if user.organization_id != admin.organization_id:
        raise AuthorizationError("Not authorized to update users of another organization")

    changes = {k: v for k, v in fields.items() if k in USER_ADMIN_FIELDS}
    if "role" in changes:
        changes["role"] = Role(changes["role"]).value
        if user.id == admin.id and changes["role"] != Role.ADMIN.value:
            raise ValidationError("Admins cannot demote themselves")
    if changes.get("manager_id"):
        if changes["manager_id"] == user.id:
            raise ValidationError("A user cannot be their own manager")
        validate_manager(db, admin.organization_id, changes["manager_id"])
    if changes.get("is_active") is False and user.id == admin.id:
        raise ValidationError("Admins cannot deactivate themselves")

    with unit_of_work(db):
        for key, value in changes.items():
            setattr(user, key, value)
        record_audit(
            db, admin, "update_user", "user", user.id,
            details={k: v for k, v in changes.items() if k != "permissions"},
        )
    return user


def deactivate_user(db: Session, principal: Principal, user_id: str) -> User:
    """Users are never deleted, only deactivated."""
    return update_user(db, principal, user_id, {"is_active": False})


# ============= SELF-SERVICE =============

def _own_account(db: Session, principal: Principal) -> Account:
    if isinstance(principal, VendorPrincipal):
        return get_or_404(db, Vendor, principal.id, "Vendor")
    return get_or_404(db, User, principal.id, "User")


def update_profile(db: Session, principal: Principal, fields: Dict[str, Any]) -> Account:
    """Users and vendors edit their own contact details; nothing else is writable here."""
    account = _own_account(db, principal)
    allowed = VENDOR_PROFILE_FIELDS if isinstance(account, Vendor) else USER_PROFILE_FIELDS
    changes = {k: v for k, v in fields.items() if k in allowed}
    for name in ("first_name", "last_name"):
        if name in changes and not (changes[name] or "").strip():
            raise ValidationError(f"{name} cannot be empty")

    with unit_of_work(db):
        for key, value in changes.items():
            setattr(account, key, value)
        record_audit(
            db, principal, "update_profile", principal.kind.value, account.id,
            details={"fields": sorted(changes)},
        )
    return account


def change_password(db: Session, principal: Principal, current_password: str, new_password: str) -> None:
    account = _own_account(db, principal)
    if not account.verify_password(current_password):
        raise ValidationError("Current password is incorrect")
    if current_password == new_password:
        raise ValidationError("New password must differ from the current password")

    with unit_of_work(db):
        account.hashed_password = get_password_hash(new_password)
        record_audit(db, principal, "change_password", principal.kind.value, account.id)
    logger.info(f"Password changed for {principal.kind.value} {account.id}")


# ============= AUTHENTICATION =============

def authenticate(db: Session, kind: PrincipalKind, email: str, password: str) -> Account:
    """
    Verify credentials for either principal kind.

    Failed attempts count towards a temporary lock; a successful login
    clears the counter.
    """
    model = Vendor if kind == PrincipalKind.VENDOR else User
    email = _normalize_email(email)
    account = db.query(model).filter(model.email == email).first()
    if not account:
        raise AuthenticationError("Invalid email or password")

    if account.is_locked():
        raise AuthenticationError("Account is temporarily locked due to too many failed login attempts")

    if not account.verify_password(password):
        with unit_of_work(db):
            account.record_failed_login()
        logger.warning(f"Failed login for {kind.value} {account.id} (attempt {account.login_attempts})")
        raise AuthenticationError("Invalid email or password")

    if not account.is_active:
        raise AuthenticationError("Account is deactivated")
    if isinstance(account, User) and not account.organization.is_active:
        raise AuthenticationError("Organization is deactivated")

    with unit_of_work(db):
        account.record_login()
    return account
