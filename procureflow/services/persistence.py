"""
Unit-of-work and guarded-write helpers shared by the lifecycle services.

Every status change goes through `guarded_update`: the expected status is
part of the UPDATE's WHERE clause, so a stale in-memory copy can never
push an entity through a transition twice.
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Type

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procureflow.core.errors import ConflictError, NotFoundError, StateError
from procureflow.core.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def unit_of_work(db: Session):
    """Commit on success; roll back and re-raise on any failure."""
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity violation rolled back: {e.orig}")
        raise ConflictError("Record conflicts with an existing entry")
    except Exception:
        db.rollback()
        raise


def get_or_404(db: Session, model: Type, entity_id: str, entity_type: str):
    entity = db.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise NotFoundError(entity_type, entity_id)
    return entity


def guarded_update(
    db: Session,
    model: Type,
    entity_id: str,
    expected_statuses: Iterable[str],
    values: Dict[Any, Any],
    entity_type: str,
) -> None:
    """
    UPDATE ... WHERE id = :id AND status IN (:expected).

    Raises StateError when no row matched, i.e. another command moved the
    entity first.
    """
    expected = list(expected_statuses)
    affected = (
        db.query(model)
        .filter(model.id == entity_id, model.status.in_(expected))
        .update(values, synchronize_session=False)
    )
    if affected == 0:
        raise StateError(
            f"{entity_type} is no longer in an allowed state ({', '.join(expected)})",
            {"entity_type": entity_type, "entity_id": entity_id},
        )


def assert_status(
    db: Session, model: Type, entity_id: str, expected_statuses: Iterable[str], entity_type: str
) -> None:
    """Re-check a companion entity's status inside the current write (row lock on PostgreSQL)."""
    guarded_update(db, model, entity_id, expected_statuses, {model.status: model.status}, entity_type)


def increment(db: Session, model: Type, entity_id: str, **deltas: int) -> None:
    """Counter bump as a SQL expression, never read-modify-write."""
    values = {getattr(model, name): getattr(model, name) + delta for name, delta in deltas.items()}
    db.query(model).filter(model.id == entity_id).update(values, synchronize_session=False)


def apply_pagination(query, skip: int = 0, limit: int = 50):
    return query.offset(max(skip, 0)).limit(min(max(limit, 1), 200))
