"""
User administration routes (organization members only).
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.core.rbac import Principal, Role, get_current_principal
from procureflow.services import accounts

router = APIRouter(prefix="/api/users", tags=["Users"])


# ============= SCHEMAS =============

class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = None
    department: Optional[str] = Field(None, max_length=100)
    role: Role = Role.USER
    manager_id: Optional[str] = None
    permissions: List[str] = []


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    department: Optional[str] = Field(None, max_length=100)
    role: Optional[Role] = None
    manager_id: Optional[str] = None
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    department: Optional[str]
    role: str
    organization_id: str
    manager_id: Optional[str]
    permissions: List[str]
    is_active: bool
    last_login: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


# ============= ROUTES =============

@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Add a member to the caller's organization (admin only)."""
    fields = payload.model_dump()
    fields["role"] = payload.role.value
    return accounts.create_user(db, principal, fields)


@router.get("", response_model=List[UserResponse])
async def list_users(
    role: Optional[Role] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return accounts.list_users(db, principal, role.value if role else None, skip, limit)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return accounts.get_user(db, principal, user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    fields = payload.model_dump(exclude_unset=True)
    if payload.role is not None:
        fields["role"] = payload.role.value
    return accounts.update_user(db, principal, user_id, fields)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return accounts.deactivate_user(db, principal, user_id)
