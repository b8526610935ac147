"""
JSON logging for the API, the worker and the audit trail.

Every line is a single JSON object on stdout. Credentials and tax
identifiers are redacted both from free-text messages and from structured
audit details.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from procureflow.core.config import settings

REDACTED = "***REDACTED***"

_SECRET_NAMES = (
    "password", "hashed_password", "secret", "secret_key", "token", "access_token",
    "authorization", "api_key", "tax_id",
)

_INLINE_SECRET = re.compile(
    r'(' + '|'.join(sorted(_SECRET_NAMES, key=len, reverse=True)) + r')'
    r'["\']?\s*[:=]\s*["\']?[^\s,;"\'}{]+',
    re.IGNORECASE,
)

# LogRecord attribute holding the audit context of an audit line
AUDIT_ATTR = "audit"


def scrub(value: Any) -> Any:
    """Redact secret-named keys at any depth."""
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in _SECRET_NAMES else scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [scrub(v) for v in value]
    return value


def scrub_text(message: str) -> str:
    return _INLINE_SECRET.sub(lambda m: f"{m.group(1)}={REDACTED}", message)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; audit records carry their context inline."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub_text(record.getMessage()),
        }

        context = getattr(record, AUDIT_ATTR, None)
        if context:
            entry.update({k: v for k, v in context.items() if v is not None})

        if record.exc_info:
            entry["exception"] = scrub_text(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging():
    """Install the JSON handler on the root logger once."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "passlib"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Emits one line per lifecycle transition, mirroring the AuditLog row."""

    def __init__(self, name: str = "procureflow.audit"):
        self.logger = get_logger(name)

    def log(
        self,
        action: str,
        actor: Dict[str, Any],
        entity_type: str,
        entity_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        context = {
            "action": action,
            "actor_id": actor.get("actor_id"),
            "actor_kind": actor.get("actor_kind"),
            "org_id": actor.get("organization_id"),
            "entity_type": entity_type,
            "entity_id": entity_id,
            "from_status": from_status,
            "to_status": to_status,
        }
        if details:
            context["details"] = scrub(details)

        transition = f" {from_status or '-'} -> {to_status or '-'}" if (from_status or to_status) else ""
        self.logger.info(
            f"AUDIT {action} {entity_type}:{entity_id or '-'}{transition}",
            extra={AUDIT_ATTR: context},
        )


audit_logger = AuditLogger()
