"""
Audit trail: persisted AuditLog rows plus the structured audit log line.

The log line is held on the session until the transaction that carries the
AuditLog row commits; a rolled-back transaction never reaches the log.
"""
from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from procureflow.core.logging import audit_logger
from procureflow.core.rbac import Principal, actor_fields
from procureflow.db.models import AuditLog

PENDING_AUDIT_KEY = "pending_audit_lines"


def record_audit(
    db: Session,
    principal: Principal,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
) -> AuditLog:
    """Add an audit row to the caller's transaction; the log line follows on commit."""
    actor = actor_fields(principal)
    payload = dict(details or {})
    if from_status or to_status:
        payload.setdefault("from_status", from_status)
        payload.setdefault("to_status", to_status)

    entry = AuditLog(
        actor_id=actor["actor_id"],
        actor_kind=actor["actor_kind"],
        organization_id=actor["organization_id"],
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=payload or None,
    )
    db.add(entry)

    db.info.setdefault(PENDING_AUDIT_KEY, []).append({
        "action": action,
        "actor": actor,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "from_status": from_status,
        "to_status": to_status,
        "details": details,
    })
    return entry


@event.listens_for(Session, "after_commit")
def _emit_committed_audit_lines(session: Session) -> None:
    for line in session.info.pop(PENDING_AUDIT_KEY, []):
        audit_logger.log(
            line["action"],
            line["actor"],
            line["entity_type"],
            entity_id=line["entity_id"],
            from_status=line["from_status"],
            to_status=line["to_status"],
            details=line["details"],
        )


@event.listens_for(Session, "after_transaction_end")
def _drop_uncommitted_audit_lines(session: Session, transaction) -> None:
    # Runs after after_commit, so anything left here was rolled back
    if transaction.parent is None:
        session.info.pop(PENDING_AUDIT_KEY, None)
