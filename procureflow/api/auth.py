"""
Authentication API routes: organization and vendor registration, login.
"""
import re
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.db.models import Vendor
from procureflow.core.config import settings
from procureflow.core.rbac import Principal, PrincipalKind, get_current_principal
from procureflow.services import accounts

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

INDUSTRIES = (
    "Technology", "Healthcare", "Manufacturing", "Construction", "Retail",
    "Financial Services", "Education", "Government", "Energy", "Transportation",
    "Real Estate", "Agriculture", "Other",
)


def _check_password(v: str) -> str:
    if not re.search(r'[A-Za-z]', v):
        raise ValueError('Password must contain at least one letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain at least one number')
    return v


# ============= SCHEMAS =============

class Address(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)


class Contact(BaseModel):
    email: EmailStr
    phone: str = Field(..., pattern=r'^\+?[\d\s\-()]+$')
    website: Optional[str] = Field(None, pattern=r'^https?://.+')


class OrganizationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    industry: str
    description: Optional[str] = Field(None, max_length=1000)
    address: Address
    contact: Contact
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None

    @field_validator('industry')
    @classmethod
    def validate_industry(cls, v: str) -> str:
        if v not in INDUSTRIES:
            raise ValueError(f"industry must be one of: {', '.join(INDUSTRIES)}")
        return v


class AdminIn(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = Field(None, pattern=r'^\+?[\d\s\-()]+$')

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class RegisterOrganizationRequest(BaseModel):
    organization: OrganizationIn
    admin: AdminIn


class RegisterVendorRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    company_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, pattern=r'^\+?[\d\s\-()]+$')
    specialization: List[str] = []
    location: Optional[dict] = None

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)
    user_type: PrincipalKind = PrincipalKind.USER


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    principal: dict


class MeResponse(BaseModel):
    id: str
    kind: str
    email: Optional[str]
    role: Optional[str] = None
    organization_id: Optional[str] = None


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=r'^\+?[\d\s\-()]+$')
    department: Optional[str] = Field(None, max_length=100)
    company_name: Optional[str] = Field(None, max_length=200)
    specialization: Optional[List[str]] = None
    location: Optional[dict] = None
    description: Optional[str] = Field(None, max_length=2000)
    certifications: Optional[List[str]] = None
    portfolio: Optional[List[dict]] = None
    preferences: Optional[dict] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class MessageResponse(BaseModel):
    message: str


def _account_summary(account) -> dict:
    if isinstance(account, Vendor):
        return {
            "id": account.id,
            "kind": PrincipalKind.VENDOR.value,
            "email": account.email,
            "name": account.display_name,
        }
    return {
        "id": account.id,
        "kind": PrincipalKind.USER.value,
        "email": account.email,
        "name": account.full_name,
        "role": account.role,
        "organization_id": account.organization_id,
    }


def _token_response(account) -> TokenResponse:
    return TokenResponse(
        access_token=accounts.issue_token(account),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        principal=_account_summary(account),
    )


# ============= ROUTES =============

@router.post("/register-organization", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register_organization(
    payload: RegisterOrganizationRequest,
    db: Session = Depends(get_db)
):
    """Create an organization and its first admin in one step."""
    _, admin = accounts.register_organization(
        db, payload.organization.model_dump(), payload.admin.model_dump()
    )
    return _token_response(admin)


@router.post("/register-vendor", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register_vendor(
    payload: RegisterVendorRequest,
    db: Session = Depends(get_db)
):
    vendor = accounts.register_vendor(db, payload.model_dump())
    return _token_response(vendor)


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate a user or vendor and return a JWT."""
    account = accounts.authenticate(db, login_data.user_type, login_data.email, login_data.password)
    return _token_response(account)


@router.get("/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_current_principal)):
    return MeResponse(
        id=principal.id,
        kind=principal.kind.value,
        email=principal.email,
        role=getattr(principal, "role", None) and principal.role.value,
        organization_id=getattr(principal, "organization_id", None),
    )


@router.put("/profile")
async def update_profile(
    payload: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Edit the caller's own contact details. Fields that do not apply to the caller are ignored."""
    account = accounts.update_profile(db, principal, payload.model_dump(exclude_unset=True))
    return _account_summary(account)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    accounts.change_password(db, principal, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed successfully")
