"""
Tests for registration, user administration and authentication.
"""
from datetime import timedelta

import pytest

from procureflow.core.config import settings
from procureflow.core.errors import (
    AuthenticationError, AuthorizationError, ConflictError, ValidationError,
)
from procureflow.core.rbac import (
    PrincipalKind, Role, VendorPrincipal, principal_from_claims, principal_to_claims,
)
from procureflow.core.security import decode_token
from procureflow.db.models import AuditLog, Organization, User, utcnow
from procureflow.services import accounts

PASSWORD = "password123"


def _org_fields(name):
    return {
        "name": name,
        "industry": "Technology",
        "address": {"street": "1 Main St", "city": "Austin", "state": "TX", "country": "USA", "zip_code": "73301"},
        "contact": {"email": "contact@example.com", "phone": "+1 555 0100"},
    }


class TestRegistration:
    """Organization and vendor registration."""

    def test_register_organization_links_admin(self, db, org):
        organization, admin = org
        assert organization.admin_id == admin.id
        assert admin.role == Role.ADMIN
        assert admin.organization_id == organization.id
        assert db.query(AuditLog).filter(AuditLog.action == "register_organization").count() == 1

    def test_duplicate_org_name_is_case_insensitive(self, db, make_org):
        make_org("Acme Corp", "first@acme.test")
        with pytest.raises(ConflictError):
            make_org("ACME corp", "second@acme.test")

    def test_duplicate_admin_email_conflicts(self, db, make_org):
        make_org("Acme Corp", "admin@acme.test")
        with pytest.raises(ConflictError):
            make_org("Other Corp", "admin@acme.test")
        assert db.query(Organization).count() == 1

    def test_failed_registration_leaves_nothing_behind(self, db):
        admin_fields = {"first_name": "Ada", "email": "broken@acme.test", "password": PASSWORD}
        with pytest.raises(KeyError):
            accounts.register_organization(db, _org_fields("Broken Corp"), admin_fields)
        assert db.query(Organization).count() == 0
        assert db.query(User).count() == 0

    def test_duplicate_vendor_email_conflicts(self, make_vendor):
        make_vendor("dup@vendor.test")
        with pytest.raises(ConflictError):
            make_vendor("DUP@vendor.test")


class TestUserAdministration:
    """Admin-only user management inside one organization."""

    def test_only_admin_creates_users(self, db, manager):
        with pytest.raises(AuthorizationError):
            accounts.create_user(db, manager, {
                "first_name": "X", "last_name": "Y", "email": "x@acme.test", "password": PASSWORD,
            })

    def test_manager_must_have_reviewing_role(self, db, admin, requester):
        with pytest.raises(ConflictError):
            accounts.create_user(db, admin, {
                "first_name": "X", "last_name": "Y", "email": "x@acme.test",
                "password": PASSWORD, "manager_id": requester.id,
            })

    def test_manager_from_other_org_rejected(self, db, admin, make_org):
        _, other_admin = make_org("Globex", "admin@globex.test")
        with pytest.raises(ConflictError):
            accounts.create_user(db, admin, {
                "first_name": "X", "last_name": "Y", "email": "x@acme.test",
                "password": PASSWORD, "manager_id": other_admin.id,
            })

    def test_admin_cannot_demote_self(self, db, admin):
        with pytest.raises(ValidationError):
            accounts.update_user(db, admin, admin.id, {"role": Role.USER.value})

    def test_deactivate_user(self, db, admin, requester):
        user = accounts.deactivate_user(db, admin, requester.id)
        assert user.is_active is False

    def test_user_sees_only_self(self, db, requester, manager):
        assert accounts.get_user(db, requester, requester.id).id == requester.id
        with pytest.raises(AuthorizationError):
            accounts.get_user(db, requester, manager.id)

    def test_list_users_scoped_to_org(self, db, manager, requester, make_org):
        make_org("Globex", "admin@globex.test")
        emails = {u.email for u in accounts.list_users(db, manager)}
        assert emails == {"admin@acme.test", "manager@acme.test", "user@acme.test"}


class TestAuthentication:
    """Credential checks, lockout and token claims."""

    def test_login_issues_token_with_claims(self, db, requester):
        user = accounts.authenticate(db, PrincipalKind.USER, "USER@acme.test", PASSWORD)
        claims = decode_token(accounts.issue_token(user))
        assert claims["sub"] == requester.id
        assert claims["kind"] == "user"
        assert claims["role"] == "user"
        assert principal_from_claims(claims) == requester

    def test_vendor_login(self, db, vendor):
        account = accounts.authenticate(db, PrincipalKind.VENDOR, "vendor@supply.test", PASSWORD)
        assert account.id == vendor.id

    def test_user_credentials_do_not_work_as_vendor(self, db, requester):
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.VENDOR, "user@acme.test", PASSWORD)

    def test_wrong_password_counts_attempts(self, db, requester):
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", "wrong-password1")
        user = db.query(User).filter(User.id == requester.id).one()
        assert user.login_attempts == 1

    def test_account_locks_after_max_attempts(self, db, requester):
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with pytest.raises(AuthenticationError):
                accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", "wrong-password1")

        with pytest.raises(AuthenticationError) as exc_info:
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", PASSWORD)
        assert "locked" in exc_info.value.message

    def test_successful_login_resets_counter(self, db, requester):
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", "wrong-password1")
        user = accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", PASSWORD)
        assert user.login_attempts == 0
        assert user.last_login is not None

    def test_expired_lock_starts_fresh_window(self, db, requester):
        user = db.query(User).filter(User.id == requester.id).one()
        now = utcnow()
        user.login_attempts = settings.MAX_LOGIN_ATTEMPTS
        user.lock_until = now - timedelta(minutes=1)
        user.record_failed_login(now)
        assert user.login_attempts == 1
        assert user.lock_until is None

    def test_inactive_account_refused(self, db, admin, requester):
        accounts.deactivate_user(db, admin, requester.id)
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", PASSWORD)

    def test_inactive_organization_refused(self, db, org, requester):
        organization, _ = org
        organization.is_active = False
        db.commit()
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", PASSWORD)


class TestPrincipalResolution:
    """Tokens identify the account; the stored row decides what it may do."""

    def test_role_comes_from_the_row(self, db, admin, manager):
        stale = principal_from_claims(principal_to_claims(manager))
        accounts.update_user(db, admin, manager.id, {"role": Role.USER.value})
        resolved = accounts.resolve_principal(db, stale)
        assert resolved.role == Role.USER
        assert not resolved.is_reviewer

    def test_deactivated_user_refused(self, db, admin, manager):
        stale = principal_from_claims(principal_to_claims(manager))
        accounts.deactivate_user(db, admin, manager.id)
        with pytest.raises(AuthenticationError):
            accounts.resolve_principal(db, stale)

    def test_deactivated_organization_refused(self, db, org, requester):
        organization, _ = org
        organization.is_active = False
        db.commit()
        with pytest.raises(AuthenticationError):
            accounts.resolve_principal(db, requester)

    def test_unknown_account_refused(self, db):
        with pytest.raises(AuthenticationError):
            accounts.resolve_principal(db, VendorPrincipal(id="0" * 24))

    def test_active_vendor_resolves(self, db, vendor):
        assert accounts.resolve_principal(db, vendor) == vendor


class TestSelfService:
    """Own profile and password."""

    def test_user_updates_contact_details_only(self, db, requester, manager):
        user = accounts.update_profile(db, requester, {
            "first_name": "Rosa", "department": "Finance", "role": "admin", "manager_id": None,
        })
        assert user.first_name == "Rosa"
        assert user.department == "Finance"
        assert user.role == Role.USER.value
        assert user.manager_id == manager.id

    def test_blank_name_rejected(self, db, requester):
        with pytest.raises(ValidationError):
            accounts.update_profile(db, requester, {"last_name": "   "})

    def test_vendor_profile_fields(self, db, vendor):
        updated = accounts.update_profile(db, vendor, {"company_name": "Supply Group", "department": "Sales"})
        assert updated.company_name == "Supply Group"
        assert not hasattr(updated, "department")

    def test_profile_update_is_audited(self, db, vendor):
        accounts.update_profile(db, vendor, {"phone": "+1 555 0199"})
        entry = db.query(AuditLog).filter(AuditLog.action == "update_profile").one()
        assert entry.actor_id == vendor.id
        assert entry.details["fields"] == ["phone"]

    def test_change_password(self, db, requester):
        accounts.change_password(db, requester, PASSWORD, "newpass456")
        assert accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", "newpass456").id == requester.id
        with pytest.raises(AuthenticationError):
            accounts.authenticate(db, PrincipalKind.USER, "user@acme.test", PASSWORD)

    def test_wrong_current_password(self, db, vendor):
        with pytest.raises(ValidationError):
            accounts.change_password(db, vendor, "not-my-password1", "newpass456")
        assert accounts.authenticate(db, PrincipalKind.VENDOR, "vendor@supply.test", PASSWORD).id == vendor.id

    def test_new_password_must_differ(self, db, vendor):
        with pytest.raises(ValidationError):
            accounts.change_password(db, vendor, PASSWORD, PASSWORD)
