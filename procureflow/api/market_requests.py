"""
Market request routes: the vendor-facing side of procurement.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.db.models import MarketRequest, MarketRequestStatus
from procureflow.core.rbac import Principal, get_current_principal
from procureflow.services import market_requests

router = APIRouter(prefix="/api/market-requests", tags=["Market Requests"])


# ============= SCHEMAS =============

class DeliveryLocation(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class Requirement(BaseModel):
    requirement: str = Field(..., min_length=1)
    mandatory: bool = True


class EvaluationCriterion(BaseModel):
    criterion: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0, le=100)
    description: Optional[str] = None


class MarketRequestCreate(BaseModel):
    """Anything left out is copied from the source RFP request."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    specifications: Optional[Dict[str, Any]] = None
    quantity: Optional[int] = Field(None, ge=1)
    max_budget: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    deadline: datetime
    delivery_location: Optional[DeliveryLocation] = None
    requirements: List[Requirement] = []
    evaluation_criteria: List[EvaluationCriterion] = []

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class MarketRequestPublish(MarketRequestCreate):
    rfp_request_id: str


class MarketRequestUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    specifications: Optional[Dict[str, Any]] = None
    quantity: Optional[int] = Field(None, ge=1)
    max_budget: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    deadline: Optional[datetime] = None
    delivery_location: Optional[DeliveryLocation] = None
    requirements: Optional[List[Requirement]] = None
    evaluation_criteria: Optional[List[EvaluationCriterion]] = None


class InterestRequest(BaseModel):
    is_interested: bool = True


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class AwardRequest(BaseModel):
    proposal_id: str


class InterestedVendorResponse(BaseModel):
    vendor_id: str
    viewed_at: Optional[datetime]
    is_interested: bool

    model_config = {"from_attributes": True}


class MarketRequestResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    rfp_request_id: str
    created_by_id: str
    organization_id: str
    status: str
    specifications: Optional[Dict[str, Any]]
    quantity: int
    max_budget: Optional[float]
    currency: Optional[str]
    deadline: datetime
    delivery_location: Optional[Dict[str, Any]]
    requirements: Optional[List[Dict[str, Any]]]
    evaluation_criteria: Optional[List[Dict[str, Any]]]
    proposals_count: int
    views_count: int
    winning_proposal_id: Optional[str]
    closed_at: Optional[datetime]
    awarded_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]
    interested_vendors: Optional[List[InterestedVendorResponse]] = None

    model_config = {"from_attributes": True}


def market_request_response(principal: Principal, mr: MarketRequest) -> MarketRequestResponse:
    response = MarketRequestResponse.model_validate(mr)
    visible = market_requests.interested_vendors_for(principal, mr)
    response.interested_vendors = (
        None if visible is None
        else [InterestedVendorResponse.model_validate(iv) for iv in visible]
    )
    return response


# ============= ROUTES =============

@router.post("", response_model=MarketRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_market_request(
    payload: MarketRequestPublish,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    fields = payload.fields()
    fields.pop("rfp_request_id")
    mr = market_requests.create_market_request(db, principal, payload.rfp_request_id, fields)
    return market_request_response(principal, mr)


@router.get("", response_model=List[MarketRequestResponse])
async def list_market_requests(
    status: Optional[MarketRequestStatus] = None,
    category: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Vendors browse open requests; organization users see their own organization's."""
    results = market_requests.list_market_requests(
        db, principal, status.value if status else None, category, skip, limit
    )
    return [market_request_response(principal, mr) for mr in results]


@router.get("/{mr_id}", response_model=MarketRequestResponse)
async def get_market_request(
    mr_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    mr = market_requests.view_market_request(db, principal, mr_id)
    return market_request_response(principal, mr)


@router.patch("/{mr_id}", response_model=MarketRequestResponse)
async def update_market_request(
    mr_id: str,
    payload: MarketRequestUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    mr = market_requests.update_market_request(
        db, principal, mr_id, payload.model_dump(exclude_unset=True)
    )
    return market_request_response(principal, mr)


@router.post("/{mr_id}/interest", response_model=InterestedVendorResponse)
async def mark_interest(
    mr_id: str,
    payload: InterestRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return market_requests.mark_interest(db, principal, mr_id, payload.is_interested)


@router.post("/{mr_id}/close", response_model=MarketRequestResponse)
async def close_market_request(
    mr_id: str,
    payload: ReasonRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    mr = market_requests.close_market_request(db, principal, mr_id, payload.reason)
    return market_request_response(principal, mr)


@router.post("/{mr_id}/cancel", response_model=MarketRequestResponse)
async def cancel_market_request(
    mr_id: str,
    payload: ReasonRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    mr = market_requests.cancel_market_request(db, principal, mr_id, payload.reason)
    return market_request_response(principal, mr)


@router.post("/{mr_id}/award", response_model=MarketRequestResponse)
async def award_market_request(
    mr_id: str,
    payload: AwardRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Award directly to a submitted proposal."""
    mr = market_requests.award_market_request(db, principal, mr_id, payload.proposal_id)
    return market_request_response(principal, mr)
