"""
Evaluation oracle adapter.

Scores a proposal snapshot against its market request (and optionally the
vendor's track record) via the configured LLM provider. The same provider
chain also produces vendor insights and market request analyses. The adapter
fails closed: any transport error, timeout, unparseable reply or out-of-range
score surfaces as EvaluationFailure and nothing is returned.
"""
import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from procureflow.core.config import settings
from procureflow.core.errors import EvaluationFailure, ProcurementError
from procureflow.core.logging import get_logger

logger = get_logger(__name__)

MOCK_MODEL_VERSION = "procureflow-heuristic-v1"

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class OracleTransportError(Exception):
    """Retryable provider failure (connection, timeout, rate limit, 5xx)."""


# ============= RESPONSE SCHEMA =============

class _OracleModel(BaseModel):
    # Providers answer in either snake_case or camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class EvaluationInsights(_OracleModel):
    cost_analysis: str = ""
    delivery_prediction: str = ""
    compliance_notes: str = ""
    risk_factors: List[str] = Field(default_factory=list)
    recommendation: str = ""


class OracleEvaluation(_OracleModel):
    cost_score: float = Field(ge=0, le=100)
    delivery_score: float = Field(ge=0, le=100)
    compliance_score: float = Field(ge=0, le=100)
    overall_score: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=100)
    insights: EvaluationInsights = Field(default_factory=EvaluationInsights)


class VendorPredictions(_OracleModel):
    expected_delivery_accuracy: float = Field(0, ge=0, le=100)
    price_competitiveness: Literal["competitive", "average", "expensive"] = "average"


class OracleVendorInsights(_OracleModel):
    performance_score: float = Field(ge=0, le=100)
    delivery_reliability: float = Field(ge=0, le=100)
    cost_competitiveness: float = Field(ge=0, le=100)
    risk_level: Literal["low", "medium", "high"] = "medium"
    predictions: VendorPredictions = Field(default_factory=VendorPredictions)
    recommendations: List[str] = Field(default_factory=list)


class SuggestedCriterion(_OracleModel):
    criterion: str
    suggested_weight: float = Field(ge=0, le=100)
    reasoning: str = ""


class PriceRange(_OracleModel):
    min: float = Field(0, ge=0)
    max: float = Field(0, ge=0)


class MarketInsights(_OracleModel):
    expected_price_range: PriceRange = Field(default_factory=PriceRange)
    expected_delivery_time: str = "Unknown"
    risk_factors: List[str] = Field(default_factory=list)


class OracleMarketAnalysis(_OracleModel):
    complexity_score: float = Field(ge=0, le=100)
    suggested_criteria: List[SuggestedCriterion] = Field(default_factory=list)
    market_insights: MarketInsights = Field(default_factory=MarketInsights)


# ============= PROMPTS =============

def _json(value: Any) -> str:
    return json.dumps(value, default=str)


def build_evaluation_prompt(
    proposal: Dict[str, Any],
    market_request: Dict[str, Any],
    vendor_history: Optional[List[Dict[str, Any]]] = None,
) -> str:
    history = _json(vendor_history) if vendor_history else "No historical data available"
    return f"""You are a procurement analyst. Evaluate this vendor proposal and score cost, delivery and compliance from 0 to 100.

MARKET REQUEST:
Title: {market_request.get('title')}
Description: {market_request.get('description')}
Category: {market_request.get('category')}
Max Budget: {market_request.get('max_budget')} {market_request.get('currency')}
Quantity: {market_request.get('quantity')}
Deadline: {market_request.get('deadline')}
Requirements: {_json(market_request.get('requirements') or [])}
Evaluation Criteria: {_json(market_request.get('evaluation_criteria') or [])}

PROPOSAL:
Vendor: {proposal.get('vendor_name')}
Proposed Item: {proposal.get('proposed_item')}
Description: {proposal.get('description')}
Quantity: {proposal.get('quantity')}
Unit Price: {proposal.get('unit_price')} {proposal.get('currency')}
Total Price: {proposal.get('total_price')} {proposal.get('currency')}
Delivery Time: {proposal.get('delivery_time')}
Delivery Date: {proposal.get('delivery_date')}
Warranty: {_json(proposal.get('warranty'))}
Additional Services: {', '.join(proposal.get('additional_services') or []) or 'None'}
Compliance Documents: {_json(proposal.get('compliance_documents') or [])}
Vendor Notes: {proposal.get('vendor_notes') or 'None'}

VENDOR HISTORY:
{history}

Reply with JSON only, using exactly this structure:
{{
  "cost_score": number (0-100),
  "delivery_score": number (0-100),
  "compliance_score": number (0-100),
  "overall_score": number (weighted average),
  "confidence": number (0-100),
  "insights": {{
    "cost_analysis": "string",
    "delivery_prediction": "string",
    "compliance_notes": "string",
    "risk_factors": ["string"],
    "recommendation": "string"
  }}
}}"""


def build_vendor_prompt(vendor: Dict[str, Any], history: List[Dict[str, Any]]) -> str:
    lines = "\n".join(
        f"- {p.get('proposed_item')}: {p.get('total_price')} {p.get('currency')}, "
        f"Delivery: {p.get('delivery_time')}, Status: {p.get('status')}"
        for p in history
    ) or "No proposals yet"
    return f"""You are a procurement analyst. Analyze this vendor's track record and predict future reliability.

VENDOR PROFILE:
Name: {vendor.get('name')}
Specialization: {', '.join(vendor.get('specialization') or []) or 'Not specified'}
Location: {_json(vendor.get('location') or {})}
Description: {vendor.get('description') or 'No description'}
Certifications: {_json(vendor.get('certifications') or [])}
Rating: {vendor.get('rating')}

PROPOSAL HISTORY:
{lines}

Reply with JSON only, using exactly this structure:
{{
  "performance_score": number (0-100),
  "delivery_reliability": number (0-100),
  "cost_competitiveness": number (0-100),
  "risk_level": "low" | "medium" | "high",
  "predictions": {{
    "expected_delivery_accuracy": number (0-100),
    "price_competitiveness": "competitive" | "average" | "expensive"
  }},
  "recommendations": ["string"]
}}"""


def build_market_prompt(market_request: Dict[str, Any]) -> str:
    return f"""You are a procurement analyst. Analyze this market request and suggest how to evaluate incoming proposals.

MARKET REQUEST:
Title: {market_request.get('title')}
Description: {market_request.get('description')}
Category: {market_request.get('category')}
Quantity: {market_request.get('quantity')}
Max Budget: {market_request.get('max_budget')} {market_request.get('currency')}
Specifications: {_json(market_request.get('specifications') or {})}
Requirements: {_json(market_request.get('requirements') or [])}

Reply with JSON only, using exactly this structure:
{{
  "complexity_score": number (0-100),
  "suggested_criteria": [
    {{"criterion": "string", "suggested_weight": number (0-100), "reasoning": "string"}}
  ],
  "market_insights": {{
    "expected_price_range": {{"min": number, "max": number}},
    "expected_delivery_time": "string",
    "risk_factors": ["string"]
  }}
}}"""


# ============= PARSING =============

def _extract_payload(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        raise EvaluationFailure("Evaluation oracle returned an empty response")

    match = _JSON_BLOCK.search(raw)
    if not match:
        raise EvaluationFailure("Evaluation oracle response contained no JSON object")

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise EvaluationFailure(f"Evaluation oracle returned malformed JSON: {e.msg}")

    if not isinstance(payload, dict):
        raise EvaluationFailure("Evaluation oracle JSON is not an object")
    return payload


def _validated(schema: Type[_OracleModel], raw: Optional[str], model_version: str) -> Dict[str, Any]:
    try:
        parsed = schema.model_validate(_extract_payload(raw))
    except SchemaError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise EvaluationFailure(
            "Evaluation oracle returned missing or out-of-range scores",
            {"fields": fields},
        )

    result = parsed.model_dump()
    result["evaluated_at"] = datetime.now(timezone.utc).isoformat()
    result["model_version"] = model_version
    return result


def parse_evaluation(raw: Optional[str], model_version: str) -> Dict[str, Any]:
    """Extract and validate the JSON block from a provider reply."""
    return _validated(OracleEvaluation, raw, model_version)


def parse_vendor_insights(raw: Optional[str], model_version: str) -> Dict[str, Any]:
    return _validated(OracleVendorInsights, raw, model_version)


def parse_market_analysis(raw: Optional[str], model_version: str) -> Dict[str, Any]:
    return _validated(OracleMarketAnalysis, raw, model_version)


# ============= PROVIDERS =============

def _clamp(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 1)


def _days_until(value: Any) -> Optional[int]:
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return None
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        return None
    return (value - datetime.now(timezone.utc).date()).days


def _mock_completion(
    proposal: Dict[str, Any],
    market_request: Dict[str, Any],
    vendor_history: Optional[List[Dict[str, Any]]],
) -> str:
    """Deterministic heuristic scorer used when no LLM provider is configured."""
    risks = []

    total = float(proposal.get("total_price") or 0)
    budget = market_request.get("max_budget")
    if budget:
        ratio = total / float(budget)
        cost = 100 - ratio * 40 if ratio <= 1 else 60 - (ratio - 1) * 100
        cost_note = f"Total price is {ratio:.0%} of the maximum budget."
        if ratio > 1:
            risks.append("Price exceeds the stated budget")
    else:
        cost = 70.0
        cost_note = "No budget was published; price assessed as neutral."

    days = _days_until(proposal.get("delivery_date"))
    if days is None:
        delivery = 50.0
    elif days <= 14:
        delivery = 90.0
    elif days <= 30:
        delivery = 80.0
    elif days <= 60:
        delivery = 65.0
    else:
        delivery = 50.0
        risks.append("Long delivery lead time")

    documents = proposal.get("compliance_documents") or []
    if documents:
        compliant = sum(1 for d in documents if d.get("is_compliant"))
        compliance = 100.0 * compliant / len(documents)
        if compliant < len(documents):
            risks.append("Some compliance requirements are not met")
    else:
        compliance = 50.0
        risks.append("No compliance documentation provided")

    history = vendor_history or []
    if history:
        accepted = sum(1 for p in history if p.get("status") == "accepted")
        track_record = accepted / len(history)
        delivery = delivery * 0.8 + track_record * 100 * 0.2
    confidence = 60.0 + min(len(history), 10) * 3

    cost, delivery, compliance = _clamp(cost), _clamp(delivery), _clamp(compliance)
    overall = _clamp(cost * 0.4 + delivery * 0.3 + compliance * 0.3)

    if overall >= 75:
        recommendation = "Strong candidate; proceed to negotiation."
    elif overall >= 50:
        recommendation = "Acceptable; clarify open points before deciding."
    else:
        recommendation = "Weak fit for this request."

    return "Evaluation result:\n" + json.dumps({
        "cost_score": cost,
        "delivery_score": delivery,
        "compliance_score": compliance,
        "overall_score": overall,
        "confidence": _clamp(confidence),
        "insights": {
            "cost_analysis": cost_note,
            "delivery_prediction": (
                f"Delivery expected in {days} days." if days is not None else "Delivery date unknown."
            ),
            "compliance_notes": f"{len(documents)} compliance document(s) reviewed.",
            "risk_factors": risks,
            "recommendation": recommendation,
        },
    })


def _mock_vendor_insights(vendor: Dict[str, Any], history: List[Dict[str, Any]]) -> str:
    """Heuristic vendor analysis from the decided part of the track record."""
    decided = [p for p in history if p.get("status") in ("accepted", "rejected")]
    accepted = sum(1 for p in decided if p.get("status") == "accepted")
    rating = float(vendor.get("rating") or 0)

    if decided:
        win_rate = accepted / len(decided)
        performance = 40 + win_rate * 60
        cost = 30 + win_rate * 70
        risk = "low" if win_rate >= 0.5 else "medium" if win_rate >= 0.2 else "high"
        recommendations = [f"{accepted} of {len(decided)} decided proposals were accepted."]
    else:
        performance, cost, risk = 50.0, 50.0, "medium"
        recommendations = ["No decided proposals yet; ask for references before a large award."]

    delivery = 50 + rating * 10 if rating else 60.0
    if risk == "high":
        recommendations.append("Request a delivery guarantee or staged payments.")

    cost = _clamp(cost)
    if cost >= 65:
        price_label = "competitive"
    elif cost >= 40:
        price_label = "average"
    else:
        price_label = "expensive"

    return "Vendor analysis:\n" + json.dumps({
        "performance_score": _clamp(performance),
        "delivery_reliability": _clamp(delivery),
        "cost_competitiveness": cost,
        "risk_level": risk,
        "predictions": {
            "expected_delivery_accuracy": _clamp(delivery),
            "price_competitiveness": price_label,
        },
        "recommendations": recommendations,
    })


def _mock_market_analysis(market_request: Dict[str, Any]) -> str:
    """Heuristic request analysis from requirements, specifications and volume."""
    requirements = market_request.get("requirements") or []
    specifications = market_request.get("specifications") or {}
    mandatory = sum(1 for r in requirements if r.get("is_mandatory"))
    quantity = market_request.get("quantity") or 0

    complexity = 20 + len(requirements) * 8 + mandatory * 4 + len(specifications) * 5
    if quantity > 100:
        complexity += 10

    if mandatory:
        criteria = [("Price", 35), ("Delivery", 25), ("Compliance", 40)]
    else:
        criteria = [("Price", 45), ("Delivery", 30), ("Compliance", 25)]

    risks = []
    budget = market_request.get("max_budget")
    if budget:
        price_range = {"min": round(float(budget) * 0.7, 2), "max": float(budget)}
    else:
        price_range = {"min": 0, "max": 0}
        risks.append("No maximum budget published")
    if mandatory:
        risks.append(f"{mandatory} mandatory requirement(s) narrow the vendor pool")

    return "Market analysis:\n" + json.dumps({
        "complexity_score": _clamp(complexity),
        "suggested_criteria": [
            {"criterion": name, "suggested_weight": weight, "reasoning": f"Default weight for {name.lower()}"}
            for name, weight in criteria
        ],
        "market_insights": {
            "expected_price_range": price_range,
            "expected_delivery_time": "4-8 weeks" if quantity > 100 else "2-4 weeks",
            "risk_factors": risks,
        },
    })


def _openai_completion(prompt: str) -> str:
    """OpenAI chat completion."""
    if not settings.OPENAI_API_KEY:
        raise EvaluationFailure("OPENAI_API_KEY is not configured")

    import openai

    client = openai.OpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.ORACLE_TIMEOUT_SECONDS,
        max_retries=0,
    )
    try:
        response = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": "You are a procurement analyst. Answer with JSON only."},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,
            max_tokens=1200,
        )
    except (
        openai.APITimeoutError,
        openai.APIConnectionError,
        openai.RateLimitError,
        openai.InternalServerError,
    ) as e:
        raise OracleTransportError(str(e)) from e
    except openai.OpenAIError as e:
        raise EvaluationFailure(f"OpenAI request failed: {e}")

    if not response.choices:
        raise EvaluationFailure("OpenAI returned no choices")
    message = response.choices[0].message
    return (message.content if message is not None else None) or ""


def _anthropic_completion(prompt: str) -> str:
    """Anthropic messages completion."""
    if not settings.ANTHROPIC_API_KEY:
        raise EvaluationFailure("ANTHROPIC_API_KEY is not configured")

    import anthropic

    client = anthropic.Anthropic(
        api_key=settings.ANTHROPIC_API_KEY,
        timeout=settings.ORACLE_TIMEOUT_SECONDS,
        max_retries=0,
    )
    try:
        response = client.messages.create(
            model=settings.ANTHROPIC_MODEL,
            max_tokens=1200,
            system="You are a procurement analyst. Answer with JSON only.",
            messages=[{"role": "user", "content": prompt}],
        )
    except (
        anthropic.APITimeoutError,
        anthropic.APIConnectionError,
        anthropic.RateLimitError,
        anthropic.InternalServerError,
    ) as e:
        raise OracleTransportError(str(e)) from e
    except anthropic.AnthropicError as e:
        raise EvaluationFailure(f"Anthropic request failed: {e}")

    blocks = response.content or []
    return "".join(block.text or "" for block in blocks if getattr(block, "type", "") == "text")


def _call_with_retry(completion, prompt: str) -> str:
    retryer = Retrying(
        retry=retry_if_exception_type(OracleTransportError),
        stop=stop_after_attempt(settings.ORACLE_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=settings.ORACLE_RETRY_BACKOFF_SECONDS, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return retryer(completion, prompt)
    except OracleTransportError as e:
        raise EvaluationFailure(
            f"Evaluation oracle unavailable after {settings.ORACLE_MAX_ATTEMPTS} attempt(s): {e}"
        )


def _consult(
    subject: str,
    mock_reply: Callable[[], str],
    build_prompt: Callable[[], str],
    parse: Callable[[Optional[str], str], Dict[str, Any]],
) -> Dict[str, Any]:
    """Run one oracle request through the configured provider and parse the reply."""
    provider = settings.LLM_PROVIDER
    try:
        if provider == "mock":
            return parse(mock_reply(), MOCK_MODEL_VERSION)

        if provider == "openai":
            completion, model_version = _openai_completion, settings.OPENAI_MODEL
        elif provider == "anthropic":
            completion, model_version = _anthropic_completion, settings.ANTHROPIC_MODEL
        else:
            raise EvaluationFailure(f"Unknown evaluation provider: {provider}")

        logger.info(f"Requesting {subject} from {provider}")
        return parse(_call_with_retry(completion, build_prompt()), model_version)
    except EvaluationFailure as e:
        logger.error(f"{subject.capitalize()} failed: {e.message}")
        raise
    except ProcurementError:
        raise
    except Exception as e:
        logger.exception(f"Evaluation provider {provider} crashed during {subject}")
        raise EvaluationFailure(
            f"Evaluation oracle failed unexpectedly: {type(e).__name__}",
            {"provider": provider},
        ) from e


def evaluate(
    proposal: Dict[str, Any],
    market_request: Dict[str, Any],
    vendor_history: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Score one proposal.

    Returns cost_score, delivery_score, compliance_score, overall_score,
    confidence, insights, evaluated_at and model_version. Raises
    EvaluationFailure on any provider or parsing problem, including
    errors the provider SDK was never expected to raise.
    """
    return _consult(
        f"evaluation of proposal {proposal.get('id')}",
        lambda: _mock_completion(proposal, market_request, vendor_history),
        lambda: build_evaluation_prompt(proposal, market_request, vendor_history),
        parse_evaluation,
    )


def analyze_vendor(vendor: Dict[str, Any], history: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Performance scores, risk level and predictions for one vendor."""
    return _consult(
        f"insights for vendor {vendor.get('id')}",
        lambda: _mock_vendor_insights(vendor, history),
        lambda: build_vendor_prompt(vendor, history),
        parse_vendor_insights,
    )


def analyze_market_request(market_request: Dict[str, Any]) -> Dict[str, Any]:
    """Complexity score, suggested evaluation criteria and market expectations."""
    return _consult(
        f"analysis of market request {market_request.get('id')}",
        lambda: _mock_market_analysis(market_request),
        lambda: build_market_prompt(market_request),
        parse_market_analysis,
    )
