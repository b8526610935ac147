"""
AI evaluation of proposals.

The ai_evaluation block is an annotation next to the lifecycle: it never
changes a proposal's status and is only written after the oracle returned
a fully validated result. Vendor insights and market request analyses are
read-only and never stored.
"""
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procureflow.core.config import settings
from procureflow.core.errors import AuthorizationError, EvaluationFailure, ProcurementError
from procureflow.core.logging import get_logger
from procureflow.core.rbac import (
    Principal, VendorPrincipal, require_org_user, require_reviewer, require_same_org,
)
from procureflow.db.models import MarketRequest, Proposal, ProposalStatus, Vendor
from procureflow.services import evaluation_oracle
from procureflow.services.audit import record_audit
from procureflow.services.persistence import get_or_404, unit_of_work

logger = get_logger(__name__)

BATCH_STATUSES = [ProposalStatus.SUBMITTED.value, ProposalStatus.UNDER_REVIEW.value]
COMPARABLE_STATUSES = BATCH_STATUSES + [
    ProposalStatus.ACCEPTED.value, ProposalStatus.REJECTED.value,
]
HIGH_RISK_THRESHOLD = 50


# ============= SNAPSHOTS =============

def proposal_snapshot(proposal: Proposal) -> Dict[str, Any]:
    return {
        "id": proposal.id,
        "vendor_name": proposal.vendor.display_name if proposal.vendor else None,
        "proposed_item": proposal.proposed_item,
        "description": proposal.description,
        "specifications": proposal.specifications or {},
        "quantity": proposal.quantity,
        "unit_price": proposal.unit_price,
        "total_price": proposal.total_price,
        "currency": proposal.currency,
        "delivery_time": proposal.delivery_time,
        "delivery_date": proposal.delivery_date.isoformat() if proposal.delivery_date else None,
        "warranty": proposal.warranty,
        "additional_services": proposal.additional_services or [],
        "compliance_documents": proposal.compliance_documents or [],
        "vendor_notes": proposal.vendor_notes,
    }


def market_request_snapshot(mr: MarketRequest) -> Dict[str, Any]:
    return {
        "id": mr.id,
        "title": mr.title,
        "description": mr.description,
        "category": mr.category,
        "max_budget": mr.max_budget,
        "currency": mr.currency,
        "quantity": mr.quantity,
        "deadline": mr.deadline.isoformat() if mr.deadline else None,
        "specifications": mr.specifications or {},
        "requirements": mr.requirements or [],
        "evaluation_criteria": mr.evaluation_criteria or [],
    }


def vendor_history(db: Session, vendor_id: str, exclude_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """The vendor's most recent decided proposals."""
    query = db.query(Proposal).filter(
        Proposal.vendor_id == vendor_id,
        Proposal.status.in_([ProposalStatus.ACCEPTED.value, ProposalStatus.REJECTED.value]),
    )
    if exclude_id:
        query = query.filter(Proposal.id != exclude_id)
    recent = query.order_by(Proposal.created_at.desc()).limit(settings.VENDOR_HISTORY_LIMIT).all()
    return [
        {
            "proposed_item": p.proposed_item,
            "total_price": p.total_price,
            "currency": p.currency,
            "delivery_time": p.delivery_time,
            "status": p.status,
        }
        for p in recent
    ]


def _score_proposal(db: Session, proposal: Proposal) -> Dict[str, Any]:
    return evaluation_oracle.evaluate(
        proposal_snapshot(proposal),
        market_request_snapshot(proposal.market_request),
        vendor_history(db, proposal.vendor_id, exclude_id=proposal.id),
    )


def _store(db: Session, principal: Principal, proposal: Proposal, result: Dict[str, Any]) -> None:
    with unit_of_work(db):
        db.query(Proposal).filter(Proposal.id == proposal.id).update(
            {Proposal.ai_evaluation: result}, synchronize_session=False
        )
        record_audit(
            db, principal, "ai_evaluate_proposal", "proposal", proposal.id,
            details={"overall_score": result["overall_score"], "model_version": result["model_version"]},
        )


# ============= COMMANDS =============

def evaluate_proposal(db: Session, principal: Principal, proposal_id: str) -> Proposal:
    """
    Score a proposal with the oracle and store the result.

    Any member of the market request's organization may run it, on any
    status, as often as they like; an oracle failure leaves the stored
    evaluation exactly as it was.
    """
    member = require_org_user(principal, "run AI evaluations")
    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    require_same_org(member, proposal.market_request.organization_id, "evaluate proposals")

    result = _score_proposal(db, proposal)
    _store(db, member, proposal, result)
    db.refresh(proposal)
    return proposal


def get_ai_evaluation(db: Session, principal: Principal, proposal_id: str) -> Optional[Dict[str, Any]]:
    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    if isinstance(principal, VendorPrincipal):
        if proposal.vendor_id != principal.id:
            raise AuthorizationError("Not authorized to view this evaluation")
    else:
        member = require_org_user(principal, "view AI evaluations")
        require_same_org(member, proposal.market_request.organization_id, "view AI evaluations")
    return proposal.ai_evaluation


def batch_evaluate(db: Session, principal: Principal, market_request_id: str) -> Dict[str, Any]:
    """
    Evaluate every submitted/under-review proposal that has no AI evaluation yet.

    Each proposal is scored and stored independently; one failure is
    reported and the batch moves on.
    """
    reviewer = require_reviewer(principal, "run batch AI evaluations")
    mr = get_or_404(db, MarketRequest, market_request_id, "Market request")
    require_same_org(reviewer, mr.organization_id, "evaluate proposals")

    pending = (
        db.query(Proposal)
        .filter(
            Proposal.market_request_id == mr.id,
            Proposal.status.in_(BATCH_STATUSES),
            Proposal.ai_evaluation.is_(None),
        )
        .order_by(Proposal.created_at)
        .all()
    )

    results = []
    for proposal in pending:
        proposal_id = proposal.id
        vendor_name = proposal.vendor.display_name if proposal.vendor else None
        try:
            result = _score_proposal(db, proposal)
            _store(db, reviewer, proposal, result)
        except (ProcurementError, SQLAlchemyError) as e:
            if isinstance(e, ProcurementError):
                error = e.message
            else:
                error = f"Could not store evaluation: {type(e).__name__}"
            logger.warning(f"Batch evaluation failed for proposal {proposal_id}: {error}")
            results.append({
                "proposal_id": proposal_id,
                "vendor_name": vendor_name,
                "overall_score": None,
                "success": False,
                "error": error,
            })
            continue
        results.append({
            "proposal_id": proposal_id,
            "vendor_name": vendor_name,
            "overall_score": result["overall_score"],
            "success": True,
            "error": None,
        })

    succeeded = sum(1 for r in results if r["success"])
    logger.info(
        f"Batch evaluation for market request {mr.id}: "
        f"{succeeded}/{len(results)} proposals evaluated"
    )
    return {
        "market_request_id": mr.id,
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": results,
    }


# ============= READ-THROUGH AGGREGATIONS =============

def _collect_scores(db: Session, mr: MarketRequest):
    """Stored evaluation where present, a fresh (unsaved) oracle call otherwise."""
    proposals = (
        db.query(Proposal)
        .filter(Proposal.market_request_id == mr.id, Proposal.status.in_(COMPARABLE_STATUSES))
        .order_by(Proposal.created_at)
        .all()
    )

    scored, failed = [], []
    for proposal in proposals:
        vendor_name = proposal.vendor.display_name if proposal.vendor else None
        if proposal.ai_evaluation:
            scored.append((proposal, proposal.ai_evaluation, "stored"))
            continue
        try:
            scored.append((proposal, _score_proposal(db, proposal), "fresh"))
        except EvaluationFailure as e:
            failed.append({"proposal_id": proposal.id, "vendor_name": vendor_name, "error": e.message})

    scored.sort(key=lambda item: item[1]["overall_score"], reverse=True)
    return proposals, scored, failed


def compare_proposals(db: Session, principal: Principal, market_request_id: str) -> Dict[str, Any]:
    member = require_org_user(principal, "compare proposals")
    mr = get_or_404(db, MarketRequest, market_request_id, "Market request")
    require_same_org(member, mr.organization_id, "compare proposals")

    proposals, scored, failed = _collect_scores(db, mr)

    ranked = []
    for rank, (proposal, evaluation, source) in enumerate(scored, start=1):
        ranked.append({
            "rank": rank,
            "proposal_id": proposal.id,
            "vendor_name": proposal.vendor.display_name if proposal.vendor else None,
            "status": proposal.status,
            "total_price": proposal.total_price,
            "currency": proposal.currency,
            "overall_score": evaluation["overall_score"],
            "cost_score": evaluation["cost_score"],
            "delivery_score": evaluation["delivery_score"],
            "compliance_score": evaluation["compliance_score"],
            "recommendation": (evaluation.get("insights") or {}).get("recommendation"),
            "source": source,
        })

    best_value = None
    if ranked:
        best_value = min(ranked, key=lambda r: (r["total_price"], -r["overall_score"]))["proposal_id"]

    return {
        "market_request_id": mr.id,
        "total_proposals": len(proposals),
        "ranked_proposals": ranked,
        "top_choice": ranked[0]["proposal_id"] if ranked else None,
        "best_value": best_value,
        "failed": failed,
    }


def executive_summary(db: Session, principal: Principal, market_request_id: str) -> Dict[str, Any]:
    reviewer = require_reviewer(principal, "view executive summaries")
    mr = get_or_404(db, MarketRequest, market_request_id, "Market request")
    require_same_org(reviewer, mr.organization_id, "view executive summaries")

    proposals, scored, failed = _collect_scores(db, mr)

    top = None
    if scored:
        proposal, evaluation, _ = scored[0]
        top = {
            "proposal_id": proposal.id,
            "vendor_name": proposal.vendor.display_name if proposal.vendor else None,
            "overall_score": evaluation["overall_score"],
            "total_price": proposal.total_price,
            "reasoning": (evaluation.get("insights") or {}).get("recommendation"),
        }

    risk_counter = Counter()
    high_risk = []
    for proposal, evaluation, _ in scored:
        risk_counter.update((evaluation.get("insights") or {}).get("risk_factors") or [])
        if evaluation["overall_score"] < HIGH_RISK_THRESHOLD:
            high_risk.append(proposal.id)

    prices = [p.total_price for p, _, _ in scored]
    key_insights = []
    if prices:
        key_insights.append(
            f"{len(scored)} of {len(proposals)} proposals scored; prices range "
            f"{min(prices):.2f} to {max(prices):.2f} {mr.currency}."
        )
        average = sum(e["overall_score"] for _, e, _ in scored) / len(scored)
        key_insights.append(f"Average overall score is {average:.1f}.")
    if mr.max_budget:
        within = sum(1 for price in prices if price <= mr.max_budget)
        key_insights.append(f"{within} proposal(s) are within the {mr.max_budget:.2f} budget.")

    next_steps = []
    if top:
        next_steps.append(f"Review the top-ranked proposal from {top['vendor_name']}.")
    if failed:
        next_steps.append("Re-run AI evaluation for proposals that could not be scored.")
    if high_risk:
        next_steps.append("Request clarifications from vendors flagged as high risk.")
    if not scored:
        next_steps.append("Wait for vendors to submit proposals.")

    return {
        "market_request_id": mr.id,
        "title": mr.title,
        "total_proposals": len(proposals),
        "evaluated_proposals": len(scored),
        "top_recommendation": top,
        "key_insights": key_insights,
        "risk_analysis": {
            "high_risk_proposals": high_risk,
            "common_risks": [risk for risk, _ in risk_counter.most_common(5)],
        },
        "next_steps": next_steps,
        "failed": failed,
    }


# ============= VENDOR AND MARKET ANALYSIS =============

def vendor_snapshot(vendor: Vendor) -> Dict[str, Any]:
    return {
        "id": vendor.id,
        "name": vendor.display_name,
        "specialization": vendor.specialization or [],
        "location": vendor.location or {},
        "description": vendor.description,
        "certifications": vendor.certifications or [],
        "rating": vendor.rating,
    }


def vendor_insights(db: Session, principal: Principal, vendor_id: str) -> Dict[str, Any]:
    """Oracle view of a vendor's reliability, based on its non-draft proposals."""
    require_org_user(principal, "view vendor insights")
    vendor = get_or_404(db, Vendor, vendor_id, "Vendor")

    recent = (
        db.query(Proposal)
        .filter(Proposal.vendor_id == vendor.id, Proposal.status.in_(COMPARABLE_STATUSES))
        .order_by(Proposal.created_at.desc())
        .limit(settings.VENDOR_HISTORY_LIMIT)
        .all()
    )
    history = [
        {
            "proposed_item": p.proposed_item,
            "category": p.market_request.category if p.market_request else None,
            "total_price": p.total_price,
            "currency": p.currency,
            "delivery_time": p.delivery_time,
            "status": p.status,
        }
        for p in recent
    ]

    return {
        "vendor_id": vendor.id,
        "vendor_name": vendor.display_name,
        "proposals_considered": len(history),
        "insights": evaluation_oracle.analyze_vendor(vendor_snapshot(vendor), history),
    }


def analyze_market_request(db: Session, principal: Principal, market_request_id: str) -> Dict[str, Any]:
    member = require_org_user(principal, "analyze market requests")
    mr = get_or_404(db, MarketRequest, market_request_id, "Market request")
    require_same_org(member, mr.organization_id, "analyze market requests")

    return {
        "market_request_id": mr.id,
        "analysis": evaluation_oracle.analyze_market_request(market_request_snapshot(mr)),
    }
