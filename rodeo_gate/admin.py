import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import ledger
from .deps import get_db, require_admin
from .errors import NotFound
from .models import Ticket
from .redemption import list_attempts, refund_ticket, void_ticket
from .security import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# -------------------------
# Administrative transitions
# -------------------------
def _transition(db: Session, code: str, fn, who: Identity) -> dict:
    status, changed = fn(db, code)
    if status is None:
        raise NotFound("ticket not found")
    logger.info("admin=%s ticket status=%s changed=%s", who.subject, status, changed)
    return {"ok": changed, "code": code, "status": status}


@router.post("/tickets/{code}/void")
def void(code: str, db: Session = Depends(get_db), who: Identity = Depends(require_admin)):
    return _transition(db, code, void_ticket, who)


@router.post("/tickets/{code}/refund")
def refund(code: str, db: Session = Depends(get_db), who: Identity = Depends(require_admin)):
    return _transition(db, code, refund_ticket, who)


# -------------------------
# Listings
# -------------------------
@router.get("/events/{event_ref}/tickets")
def list_tickets(
    event_ref: str,
    limit: int = 500,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_admin),
):
    tickets = db.execute(
        select(Ticket).where(Ticket.event_ref == event_ref).order_by(Ticket.id).limit(limit)
    ).scalars().all()
    return [
        {
            "code": t.code,
            "event_ref": t.event_ref,
            "owner_id": t.owner_id,
            "session_id": t.session_id,
            "status": t.status,
            "redeemed_at": str(t.redeemed_at) if t.redeemed_at else None,
            "redeemed_by_gate": t.redeemed_by_gate,
        }
        for t in tickets
    ]


@router.get("/audit")
def get_audit(
    limit: int = 80,
    ticket_code: Optional[str] = None,
    gate_id: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_admin),
):
    rows = list_attempts(db, ticket_code=ticket_code, gate_id=gate_id, limit=max(1, min(limit, 500)))
    return [
        {
            "attempted_at": str(a.attempted_at),
            "ticket_code": a.ticket_code,
            "gate_id": a.gate_id,
            "actor_id": a.actor_id,
            "ip": a.ip,
            "user_agent": a.user_agent,
            "outcome": a.outcome,
        }
        for a in rows
    ]


@router.get("/stripe-events")
def get_stripe_events(
    limit: int = 10,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_admin),
):
    return [
        {
            "event_id": e.event_id,
            "event_type": e.event_type,
            "session_id": e.session_id,
            "client_reference_id": e.client_reference_id,
            "created": e.created,
            "payload_digest": e.payload_digest,
            "received_at": str(e.received_at),
        }
        for e in ledger.list_recent(db, limit=max(1, min(limit, 200)))
    ]
