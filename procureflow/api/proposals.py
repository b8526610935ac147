"""
Proposal routes: vendor bids and their evaluation by the buyer.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.db.models import ProposalStatus
from procureflow.core.rbac import Principal, get_current_principal
from procureflow.services import proposals

router = APIRouter(prefix="/api/proposals", tags=["Proposals"])


# ============= SCHEMAS =============

class Warranty(BaseModel):
    duration: Optional[str] = None
    terms: Optional[str] = None


class ComplianceDocument(BaseModel):
    name: str
    url: Optional[str] = None
    document_type: Optional[str] = None
    is_compliant: Optional[bool] = None


class ProposalCreate(BaseModel):
    market_request_id: str
    proposed_item: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    specifications: Dict[str, Any] = {}
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    currency: str = "USD"
    delivery_time: str = Field(..., min_length=1, max_length=100)
    delivery_date: date
    warranty: Optional[Warranty] = None
    additional_services: List[str] = []
    compliance_documents: List[ComplianceDocument] = []
    vendor_notes: Optional[str] = Field(None, max_length=1000)


class ProposalUpdate(BaseModel):
    proposed_item: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    specifications: Optional[Dict[str, Any]] = None
    quantity: Optional[int] = Field(None, ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    delivery_time: Optional[str] = Field(None, min_length=1, max_length=100)
    delivery_date: Optional[date] = None
    warranty: Optional[Warranty] = None
    additional_services: Optional[List[str]] = None
    compliance_documents: Optional[List[ComplianceDocument]] = None
    vendor_notes: Optional[str] = Field(None, max_length=1000)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ScoreEntry(BaseModel):
    criterion: str = Field(..., min_length=1)
    score: float = Field(..., ge=0)
    max_score: float = Field(..., gt=0)
    comments: Optional[str] = None


class EvaluateRequest(BaseModel):
    scores: List[ScoreEntry] = Field(..., min_length=1)
    overall_notes: Optional[str] = Field(None, max_length=2000)


class AcceptRequest(BaseModel):
    manager_notes: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    rejection_reason: Optional[str] = Field(None, max_length=1000)
    manager_notes: Optional[str] = Field(None, max_length=1000)


class ProposalResponse(BaseModel):
    id: str
    market_request_id: str
    vendor_id: str
    proposed_item: str
    description: str
    specifications: Optional[Dict[str, Any]]
    quantity: int
    unit_price: float
    total_price: float
    currency: Optional[str]
    delivery_time: str
    delivery_date: date
    warranty: Optional[Dict[str, Any]]
    additional_services: Optional[List[str]]
    status: str
    evaluation: Optional[Dict[str, Any]]
    ai_evaluation: Optional[Dict[str, Any]]
    compliance_documents: Optional[List[Dict[str, Any]]]
    vendor_notes: Optional[str]
    manager_notes: Optional[str]
    rejection_reason: Optional[str]
    submitted_at: Optional[datetime]
    reviewed_at: Optional[datetime]
    accepted_at: Optional[datetime]
    rejected_at: Optional[datetime]
    withdrawn_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


# ============= VENDOR ROUTES =============

@router.post("", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    payload: ProposalCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a draft proposal; total_price is computed server-side."""
    fields = payload.model_dump(exclude={"market_request_id"})
    return proposals.create_proposal(db, principal, payload.market_request_id, fields)


@router.patch("/{proposal_id}", response_model=ProposalResponse)
async def update_proposal(
    proposal_id: str,
    payload: ProposalUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.update_proposal(db, principal, proposal_id, payload.model_dump(exclude_unset=True))


@router.post("/{proposal_id}/submit", response_model=ProposalResponse)
async def submit_proposal(
    proposal_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.submit_proposal(db, principal, proposal_id)


@router.post("/{proposal_id}/withdraw", response_model=ProposalResponse)
async def withdraw_proposal(
    proposal_id: str,
    payload: WithdrawRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.withdraw_proposal(db, principal, proposal_id, payload.reason)


@router.delete("/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_proposal(
    proposal_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    proposals.delete_proposal(db, principal, proposal_id)


# ============= REVIEWER ROUTES =============

@router.post("/{proposal_id}/evaluate", response_model=ProposalResponse)
async def evaluate_proposal(
    proposal_id: str,
    payload: EvaluateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    scores = [entry.model_dump() for entry in payload.scores]
    return proposals.evaluate_proposal(db, principal, proposal_id, scores, payload.overall_notes)


@router.post("/{proposal_id}/accept", response_model=ProposalResponse)
async def accept_proposal(
    proposal_id: str,
    payload: AcceptRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Accept the proposal and award its market request."""
    return proposals.accept_proposal(db, principal, proposal_id, payload.manager_notes)


@router.post("/{proposal_id}/reject", response_model=ProposalResponse)
async def reject_proposal(
    proposal_id: str,
    payload: RejectRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.reject_proposal(
        db, principal, proposal_id, payload.rejection_reason, payload.manager_notes
    )


# ============= READS =============

@router.get("", response_model=List[ProposalResponse])
async def list_proposals(
    market_request_id: Optional[str] = None,
    status: Optional[ProposalStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.list_proposals(
        db, principal, market_request_id, status.value if status else None, skip, limit
    )


@router.get("/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return proposals.get_proposal(db, principal, proposal_id)
