"""
Pure validation and derivation rules for the procurement lifecycle.

Services call these on every mutation path; nothing here touches the
database.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from procureflow.core.errors import ValidationError

CURRENCIES = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CNY", "INR")

CATEGORIES = (
    "Electronics", "Hardware", "Software", "Office Supplies", "Furniture",
    "Machinery", "Tools", "Vehicles", "Services", "Maintenance", "Other",
)

# Fields callers may change through update commands
RFP_UPDATABLE_FIELDS = frozenset({
    "title", "description", "category", "urgency", "specifications", "quantity",
    "budget_estimate", "currency", "justification", "expected_delivery_date",
})

MARKET_REQUEST_UPDATABLE_FIELDS = frozenset({
    "title", "description", "specifications", "quantity", "max_budget", "currency",
    "deadline", "delivery_location", "requirements", "evaluation_criteria",
})

PROPOSAL_UPDATABLE_FIELDS = frozenset({
    "proposed_item", "description", "specifications", "quantity", "unit_price",
    "currency", "delivery_time", "delivery_date", "warranty", "additional_services",
    "compliance_documents", "vendor_notes",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def filter_fields(fields: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    """Drop anything outside the whitelist."""
    allowed = set(allowed)
    return {k: v for k, v in fields.items() if k in allowed}


def compute_total_price(quantity: int, unit_price: float) -> float:
    """total_price is always derived server-side."""
    validate_quantity(quantity)
    validate_price(unit_price)
    return quantity * unit_price


def validate_quantity(quantity: int) -> None:
    if quantity is None or quantity < 1:
        raise ValidationError("Quantity must be at least 1", {"quantity": quantity})


def validate_price(amount: float, field: str = "unit_price") -> None:
    if amount is None or amount < 0:
        raise ValidationError(f"{field} cannot be negative", {field: amount})


def validate_currency(currency: Optional[str]) -> None:
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}", {"currency": currency})


def validate_deadline_future(deadline: datetime, now: Optional[datetime] = None) -> None:
    """Deadlines must lie strictly in the future."""
    now = now or utcnow()
    if ensure_aware(deadline) <= now:
        raise ValidationError("Deadline must be in the future", {"deadline": deadline.isoformat()})


def deadline_passed(deadline: datetime, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return now > ensure_aware(deadline)


def validate_delivery_date(delivery_date: date, today: Optional[date] = None) -> None:
    today = today or utcnow().date()
    if isinstance(delivery_date, datetime):
        delivery_date = delivery_date.date()
    if delivery_date < today:
        raise ValidationError(
            "Delivery date cannot be in the past",
            {"delivery_date": delivery_date.isoformat()},
        )


def validate_criteria_weights(criteria: Optional[List[Dict[str, Any]]]) -> None:
    """Evaluation criterion weights must total exactly 100 when any are given."""
    if not criteria:
        return
    total = 0
    for item in criteria:
        weight = item.get("weight")
        if weight is None or weight < 0 or weight > 100:
            raise ValidationError(
                "Each criterion weight must be between 0 and 100",
                {"criterion": item.get("criterion")},
            )
        total += weight
    if abs(total - 100) > 1e-9:
        raise ValidationError(
            "Evaluation criteria weights must sum to 100",
            {"total_weight": total},
        )


def compute_evaluation_scores(scores: List[Dict[str, Any]]) -> Dict[str, float]:
    """
    Aggregate manual evaluation scores.

    Each entry carries `score` and `max_score` (score within [0, max_score]).
    Returns total_score, max_total_score and percentage_score.
    """
    if not scores:
        raise ValidationError("At least one score is required")

    total = 0.0
    max_possible = 0.0
    for entry in scores:
        score = entry.get("score")
        max_score = entry.get("max_score")
        if score is None or max_score is None:
            raise ValidationError("Each score needs score and max_score", {"criterion": entry.get("criterion")})
        if max_score <= 0 or score < 0 or score > max_score:
            raise ValidationError(
                "Score must be between 0 and max_score",
                {"criterion": entry.get("criterion"), "score": score, "max_score": max_score},
            )
        total += score
        max_possible += max_score

    return {
        "total_score": total,
        "max_total_score": max_possible,
        "percentage_score": total / max_possible * 100,
    }
