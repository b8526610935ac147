"""
SQLAlchemy ORM models for ProcureFlow.

Organizations own users, RFP requests and market requests; vendors are
independent accounts that submit proposals against open market requests.
"""
import secrets
from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from procureflow.core.config import settings
from procureflow.core.rbac import Role
from procureflow.core import security
from procureflow.db.session import Base


def generate_id() -> str:
    """Opaque 24-hex-character identifier."""
    return secrets.token_hex(12)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ============= ENUMS =============

UserRole = Role


class RFPStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_CLARIFICATION = "needs_clarification"
    CONVERTED_TO_MARKET = "converted_to_market"


class MarketRequestStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    AWARDED = "awarded"
    CANCELLED = "cancelled"


class ProposalStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Stored as VARCHAR + CHECK so the same schema runs on PostgreSQL and SQLite.
# Enum values (lowercase) are persisted, not names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


UserRoleType = Enum(*enum_values(UserRole), name="userrole", native_enum=False)
RFPStatusType = Enum(*enum_values(RFPStatus), name="rfpstatus", native_enum=False)
MarketRequestStatusType = Enum(
    *enum_values(MarketRequestStatus), name="marketrequeststatus", native_enum=False
)
ProposalStatusType = Enum(*enum_values(ProposalStatus), name="proposalstatus", native_enum=False)
UrgencyType = Enum(*enum_values(Urgency), name="urgency", native_enum=False)


# ============= ACCOUNTS & MULTI-TENANCY =============

class AccountMixin:
    """Credential and lockout state shared by users and vendors."""

    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime(timezone=True))
    last_login = Column(DateTime(timezone=True))

    def verify_password(self, password: str) -> bool:
        return security.verify_password(password, self.hashed_password)

    def is_locked(self, now: datetime = None) -> bool:
        lock_until = as_utc(self.lock_until)
        return lock_until is not None and lock_until > (now or utcnow())

    def record_failed_login(self, now: datetime = None) -> None:
        now = now or utcnow()
        lock_until = as_utc(self.lock_until)
        # An expired lock starts a fresh window
        if lock_until is not None and lock_until <= now:
            self.login_attempts = 0
            self.lock_until = None
        self.login_attempts = (self.login_attempts or 0) + 1
        if self.login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
            self.lock_until = now + timedelta(minutes=settings.ACCOUNT_LOCK_MINUTES)

    def record_login(self, now: datetime = None) -> None:
        self.login_attempts = 0
        self.lock_until = None
        self.last_login = now or utcnow()


class Organization(Base):
    """Buying organization (tenant)."""
    __tablename__ = "organizations"

    id = Column(String(24), primary_key=True, default=generate_id)
    name = Column(String(200), nullable=False)
    industry = Column(String(100), nullable=False)
    description = Column(Text)
    address = Column(JSON, default=dict)
    contact = Column(JSON, default=dict)
    # Plain reference; a foreign key here would make users <-> organizations cyclic
    admin_id = Column(String(24))
    registration_number = Column(String(100))
    tax_id = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    users = relationship("User", back_populates="organization")
    rfp_requests = relationship("RFPRequest", back_populates="organization")
    market_requests = relationship("MarketRequest", back_populates="organization")


Index("uq_organizations_name_lower", func.lower(Organization.name), unique=True)


class User(AccountMixin, Base):
    """Organization member."""
    __tablename__ = "users"

    id = Column(String(24), primary_key=True, default=generate_id)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(50))
    department = Column(String(100))
    role = Column(UserRoleType, default=UserRole.USER.value, nullable=False)
    organization_id = Column(String(24), ForeignKey("organizations.id"), nullable=False, index=True)
    manager_id = Column(String(24), ForeignKey("users.id"), nullable=True)
    permissions = Column(JSON, default=list)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="users")
    manager = relationship("User", remote_side=[id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Vendor(AccountMixin, Base):
    """Independent supplier account."""
    __tablename__ = "vendors"

    id = Column(String(24), primary_key=True, default=generate_id)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    company_name = Column(String(200))
    phone = Column(String(50))
    specialization = Column(JSON, default=list)  # category tags
    location = Column(JSON, default=dict)
    description = Column(Text)
    certifications = Column(JSON, default=list)
    portfolio = Column(JSON, default=list)
    preferences = Column(JSON, default=dict)
    rating = Column(Float, default=0.0)
    total_proposals = Column(Integer, default=0, nullable=False)
    accepted_proposals = Column(Integer, default=0, nullable=False)
    rejected_proposals = Column(Integer, default=0, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    proposals = relationship("Proposal", back_populates="vendor")

    @property
    def display_name(self) -> str:
        return self.company_name or f"{self.first_name} {self.last_name}"


# ============= RFP REQUESTS =============

class RFPRequest(Base):
    """Internal purchase request awaiting manager review."""
    __tablename__ = "rfp_requests"

    id = Column(String(24), primary_key=True, default=generate_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    requested_by_id = Column(String(24), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(24), ForeignKey("organizations.id"), nullable=False)
    manager_id = Column(String(24), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(RFPStatusType, default=RFPStatus.PENDING.value, nullable=False)
    urgency = Column(UrgencyType, default=Urgency.MEDIUM.value, nullable=False)
    specifications = Column(JSON, default=dict)
    quantity = Column(Integer, nullable=False)
    budget_estimate = Column(Float)
    currency = Column(String(3), default="USD")
    justification = Column(Text, nullable=False)
    expected_delivery_date = Column(Date)
    manager_notes = Column(Text)
    clarification_notes = Column(Text)
    rejection_reason = Column(Text)
    reviewed_at = Column(DateTime(timezone=True))
    # Back-reference written by the conversion; market_requests.rfp_request_id owns the FK
    market_request_id = Column(String(24))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="rfp_requests")
    requested_by = relationship("User", foreign_keys=[requested_by_id])
    manager = relationship("User", foreign_keys=[manager_id])

    __table_args__ = (
        Index("ix_rfp_requests_org_status", "organization_id", "status"),
    )


# ============= MARKET REQUESTS =============

class MarketRequest(Base):
    """Vendor-facing listing created from an approved RFP request."""
    __tablename__ = "market_requests"

    id = Column(String(24), primary_key=True, default=generate_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    rfp_request_id = Column(String(24), ForeignKey("rfp_requests.id"), nullable=False, unique=True)
    created_by_id = Column(String(24), ForeignKey("users.id"), nullable=False)
    organization_id = Column(String(24), ForeignKey("organizations.id"), nullable=False)
    status = Column(MarketRequestStatusType, default=MarketRequestStatus.OPEN.value, nullable=False)
    specifications = Column(JSON, default=dict)
    quantity = Column(Integer, nullable=False)
    max_budget = Column(Float)
    currency = Column(String(3), default="USD")
    deadline = Column(DateTime(timezone=True), nullable=False)
    delivery_location = Column(JSON, default=dict)
    requirements = Column(JSON, default=list)
    evaluation_criteria = Column(JSON, default=list)
    proposals_count = Column(Integer, default=0, nullable=False)
    views_count = Column(Integer, default=0, nullable=False)
    # No FK: proposals already reference market_requests
    winning_proposal_id = Column(String(24))
    closed_at = Column(DateTime(timezone=True))
    awarded_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    organization = relationship("Organization", back_populates="market_requests")
    rfp_request = relationship("RFPRequest")
    created_by = relationship("User")
    interested_vendors = relationship(
        "InterestedVendor", back_populates="market_request", cascade="all, delete-orphan"
    )
    proposals = relationship("Proposal", back_populates="market_request")

    __table_args__ = (
        Index("ix_market_requests_org_status", "organization_id", "status"),
        Index("ix_market_requests_deadline_status", "deadline", "status"),
    )


class InterestedVendor(Base):
    """One row per vendor that has viewed or flagged interest in a market request."""
    __tablename__ = "interested_vendors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    market_request_id = Column(String(24), ForeignKey("market_requests.id"), nullable=False)
    vendor_id = Column(String(24), ForeignKey("vendors.id"), nullable=False)
    viewed_at = Column(DateTime(timezone=True), default=utcnow)
    is_interested = Column(Boolean, default=False, nullable=False)

    # Relationships
    market_request = relationship("MarketRequest", back_populates="interested_vendors")
    vendor = relationship("Vendor")

    __table_args__ = (
        UniqueConstraint("market_request_id", "vendor_id", name="uq_interested_vendor_mr_vendor"),
    )


# ============= PROPOSALS =============

class Proposal(Base):
    """A vendor's offer against a market request."""
    __tablename__ = "proposals"

    id = Column(String(24), primary_key=True, default=generate_id)
    market_request_id = Column(String(24), ForeignKey("market_requests.id"), nullable=False)
    vendor_id = Column(String(24), ForeignKey("vendors.id"), nullable=False)
    proposed_item = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    specifications = Column(JSON, default=dict)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    currency = Column(String(3), default="USD")
    delivery_time = Column(String(100), nullable=False)
    delivery_date = Column(Date, nullable=False)
    warranty = Column(JSON)
    additional_services = Column(JSON, default=list)
    status = Column(ProposalStatusType, default=ProposalStatus.DRAFT.value, nullable=False)
    evaluation = Column(JSON(none_as_null=True))
    ai_evaluation = Column(JSON(none_as_null=True))
    compliance_documents = Column(JSON, default=list)
    vendor_notes = Column(Text)
    manager_notes = Column(Text)
    rejection_reason = Column(Text)
    submitted_at = Column(DateTime(timezone=True))
    reviewed_at = Column(DateTime(timezone=True))
    accepted_at = Column(DateTime(timezone=True))
    rejected_at = Column(DateTime(timezone=True))
    withdrawn_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    market_request = relationship("MarketRequest", back_populates="proposals")
    vendor = relationship("Vendor", back_populates="proposals")

    __table_args__ = (
        UniqueConstraint("market_request_id", "vendor_id", name="uq_proposal_mr_vendor"),
        Index("ix_proposals_vendor_status", "vendor_id", "status"),
        Index("ix_proposals_mr_status", "market_request_id", "status"),
    )

    @property
    def is_editable(self) -> bool:
        return self.status == ProposalStatus.DRAFT.value

    @property
    def can_be_withdrawn(self) -> bool:
        return self.status in (ProposalStatus.SUBMITTED.value, ProposalStatus.UNDER_REVIEW.value)


# ============= AUDIT LOG =============

class AuditLog(Base):
    """Append-only record of every state-changing command."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    actor_id = Column(String(24), nullable=True)
    actor_kind = Column(String(16), nullable=True)
    # Null for vendor actions
    organization_id = Column(String(24), ForeignKey("organizations.id"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(String(24))
    details = Column(JSON)

    __table_args__ = (
        Index("ix_audit_logs_org_timestamp", "organization_id", "timestamp"),
    )
