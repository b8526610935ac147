"""
AI evaluation routes.

Oracle calls block on a remote provider, so these handlers are plain
`def` and run in FastAPI's threadpool.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.core.logging import get_logger
from procureflow.core.rbac import (
    Principal, get_current_principal, principal_to_claims, require_reviewer, require_same_org,
)
from procureflow.db.models import MarketRequest
from procureflow.services import ai_evaluation
from procureflow.services.persistence import get_or_404

router = APIRouter(prefix="/api/ai", tags=["AI Evaluation"])
logger = get_logger(__name__)


# ============= SCHEMAS =============

class Insights(BaseModel):
    cost_analysis: str
    delivery_prediction: str
    compliance_notes: str
    risk_factors: List[str]
    recommendation: str


class AIEvaluationResponse(BaseModel):
    cost_score: float
    delivery_score: float
    compliance_score: float
    overall_score: float
    confidence: float
    insights: Insights
    evaluated_at: datetime
    model_version: str


class ProposalEvaluationResponse(BaseModel):
    proposal_id: str
    ai_evaluation: Optional[AIEvaluationResponse]


class BatchItem(BaseModel):
    proposal_id: str
    vendor_name: Optional[str]
    overall_score: Optional[float]
    success: bool
    error: Optional[str]


class BatchResponse(BaseModel):
    market_request_id: str
    total: int
    succeeded: int
    failed: int
    results: List[BatchItem]


class QueuedResponse(BaseModel):
    market_request_id: str
    job_id: str
    status: str = "queued"


class VendorPredictions(BaseModel):
    expected_delivery_accuracy: float
    price_competitiveness: str


class VendorInsights(BaseModel):
    performance_score: float
    delivery_reliability: float
    cost_competitiveness: float
    risk_level: str
    predictions: VendorPredictions
    recommendations: List[str]
    evaluated_at: datetime
    model_version: str


class VendorInsightsResponse(BaseModel):
    vendor_id: str
    vendor_name: str
    proposals_considered: int
    insights: VendorInsights


class SuggestedCriterion(BaseModel):
    criterion: str
    suggested_weight: float
    reasoning: str


class MarketAnalysis(BaseModel):
    complexity_score: float
    suggested_criteria: List[SuggestedCriterion]
    market_insights: Dict[str, Any]
    evaluated_at: datetime
    model_version: str


class MarketAnalysisResponse(BaseModel):
    market_request_id: str
    analysis: MarketAnalysis


# ============= ROUTES =============

@router.post("/proposals/{proposal_id}/evaluate", response_model=ProposalEvaluationResponse)
def evaluate_proposal(
    proposal_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Score a proposal with the evaluation oracle and store the result."""
    proposal = ai_evaluation.evaluate_proposal(db, principal, proposal_id)
    return ProposalEvaluationResponse(proposal_id=proposal.id, ai_evaluation=proposal.ai_evaluation)


@router.get("/proposals/{proposal_id}/evaluation", response_model=ProposalEvaluationResponse)
def get_ai_evaluation(
    proposal_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    result = ai_evaluation.get_ai_evaluation(db, principal, proposal_id)
    return ProposalEvaluationResponse(proposal_id=proposal_id, ai_evaluation=result)


@router.post(
    "/market-requests/{mr_id}/batch-evaluate",
    response_model=BatchResponse,
    responses={202: {"model": QueuedResponse}},
)
def batch_evaluate(
    mr_id: str,
    background: bool = Query(False, description="Run on the RQ worker instead of inline"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Evaluate every pending proposal on a market request."""
    if background:
        from procureflow.workers.jobs import enqueue_batch_evaluation

        # Checked again inside the job
        reviewer = require_reviewer(principal, "run batch AI evaluations")
        mr = get_or_404(db, MarketRequest, mr_id, "Market request")
        require_same_org(reviewer, mr.organization_id, "evaluate proposals")

        job = enqueue_batch_evaluation(principal_to_claims(principal), mr_id)
        logger.info(f"Queued batch AI evaluation {job.id} for market request {mr_id}")
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=QueuedResponse(market_request_id=mr_id, job_id=job.id).model_dump(),
        )
    return ai_evaluation.batch_evaluate(db, principal, mr_id)


@router.get("/market-requests/{mr_id}/compare")
def compare_proposals(
    mr_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Rank proposals by overall AI score."""
    return ai_evaluation.compare_proposals(db, principal, mr_id)


@router.get("/market-requests/{mr_id}/executive-summary")
def executive_summary(
    mr_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return ai_evaluation.executive_summary(db, principal, mr_id)


@router.get("/vendors/{vendor_id}/insights", response_model=VendorInsightsResponse)
def vendor_insights(
    vendor_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Reliability and price competitiveness of a vendor (organization users only)."""
    return ai_evaluation.vendor_insights(db, principal, vendor_id)


@router.post("/market-requests/{mr_id}/analysis", response_model=MarketAnalysisResponse)
def analyze_market_request(
    mr_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Complexity and suggested evaluation criteria for a market request."""
    return ai_evaluation.analyze_market_request(db, principal, mr_id)
