import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import StripeEvent
from .payments import EventEnvelope

logger = logging.getLogger(__name__)


def seen(db: Session, event_id: str) -> bool:
    return db.execute(
        select(StripeEvent.id).where(StripeEvent.event_id == event_id)
    ).first() is not None


def record(db: Session, env: EventEnvelope) -> bool:
    """Insert the ledger row for ``env``. False if the event id is already there."""
    db.add(StripeEvent(
        event_id=env.id,
        event_type=env.type,
        session_id=env.session_id,
        client_reference_id=env.client_reference_id,
        created=env.created,
        payload_digest=env.payload_digest,
    ))
    try:
        db.commit()
    except IntegrityError:
        # a concurrent delivery of the same event got there first
        db.rollback()
        logger.info("ledger duplicate event_id=%s", env.id)
        return False
    return True


def list_recent(db: Session, limit: int = 10) -> list[StripeEvent]:
    return list(
        db.execute(select(StripeEvent).order_by(StripeEvent.id.desc()).limit(limit)).scalars().all()
    )
