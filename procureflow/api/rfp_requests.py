"""
RFP request routes: internal purchase requests and their manager review.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from procureflow.api.market_requests import MarketRequestCreate, MarketRequestResponse, market_request_response
from procureflow.db.session import get_db
from procureflow.db.models import RFPStatus, Urgency
from procureflow.core.rbac import Principal, get_current_principal
from procureflow.services import rfp_requests

router = APIRouter(prefix="/api/rfp-requests", tags=["RFP Requests"])


# ============= SCHEMAS =============

class RFPRequestCreate(BaseModel):
    model_config = {"use_enum_values": True}

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    category: str
    urgency: Urgency = Urgency.MEDIUM
    specifications: Dict[str, Any] = {}
    quantity: int = Field(..., ge=1)
    budget_estimate: Optional[float] = Field(None, ge=0)
    currency: str = "USD"
    justification: str = Field(..., min_length=1, max_length=1000)
    expected_delivery_date: Optional[date] = None


class RFPRequestUpdate(BaseModel):
    model_config = {"use_enum_values": True}

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    category: Optional[str] = None
    urgency: Optional[Urgency] = None
    specifications: Optional[Dict[str, Any]] = None
    quantity: Optional[int] = Field(None, ge=1)
    budget_estimate: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    justification: Optional[str] = Field(None, min_length=1, max_length=1000)
    expected_delivery_date: Optional[date] = None


class ReviewRequest(BaseModel):
    model_config = {"use_enum_values": True}

    decision: RFPStatus
    manager_notes: Optional[str] = Field(None, max_length=1000)
    clarification_notes: Optional[str] = Field(None, max_length=1000)
    rejection_reason: Optional[str] = Field(None, max_length=1000)


class RFPRequestResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    requested_by_id: str
    organization_id: str
    manager_id: str
    status: str
    urgency: str
    specifications: Optional[Dict[str, Any]]
    quantity: int
    budget_estimate: Optional[float]
    currency: Optional[str]
    justification: str
    expected_delivery_date: Optional[date]
    manager_notes: Optional[str]
    clarification_notes: Optional[str]
    rejection_reason: Optional[str]
    reviewed_at: Optional[datetime]
    market_request_id: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


# ============= ROUTES =============

@router.post("", response_model=RFPRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_rfp_request(
    payload: RFPRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Raise a purchase request; it is routed to the requester's manager."""
    return rfp_requests.create_rfp_request(db, principal, payload.model_dump())


@router.get("", response_model=List[RFPRequestResponse])
async def list_rfp_requests(
    status: Optional[RFPStatus] = None,
    category: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return rfp_requests.list_rfp_requests(
        db, principal, status.value if status else None, category, skip, limit
    )


@router.get("/{rfp_id}", response_model=RFPRequestResponse)
async def get_rfp_request(
    rfp_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return rfp_requests.get_rfp_request(db, principal, rfp_id)


@router.patch("/{rfp_id}", response_model=RFPRequestResponse)
async def update_rfp_request(
    rfp_id: str,
    payload: RFPRequestUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return rfp_requests.update_rfp_request(db, principal, rfp_id, payload.model_dump(exclude_unset=True))


@router.delete("/{rfp_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rfp_request(
    rfp_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    rfp_requests.delete_rfp_request(db, principal, rfp_id)


@router.post("/{rfp_id}/review", response_model=RFPRequestResponse)
async def review_rfp_request(
    rfp_id: str,
    payload: ReviewRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Approve, reject, or send back for clarification."""
    return rfp_requests.review_rfp_request(
        db,
        principal,
        rfp_id,
        payload.decision,
        manager_notes=payload.manager_notes,
        clarification_notes=payload.clarification_notes,
        rejection_reason=payload.rejection_reason,
    )


@router.post("/{rfp_id}/convert", response_model=MarketRequestResponse, status_code=status.HTTP_201_CREATED)
async def convert_to_market(
    rfp_id: str,
    payload: MarketRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Publish an approved request to the vendor marketplace."""
    mr = rfp_requests.convert_to_market(db, principal, rfp_id, payload.fields())
    return market_request_response(principal, mr)
