from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from .deps import get_current_identity, get_db
from .errors import NotFound
from .models import Purchase, Ticket
from .security import Identity

router = APIRouter(prefix="/me", tags=["buyer"])


def _ticket_out(t: Ticket) -> dict:
    return {
        "code": t.code,
        "event_ref": t.event_ref,
        "session_id": t.session_id,
        "status": t.status,
        "issued_at": str(t.issued_at),
        "valid_from": str(t.valid_from) if t.valid_from else None,
        "valid_to": str(t.valid_to) if t.valid_to else None,
        "redeemed_at": str(t.redeemed_at) if t.redeemed_at else None,
    }


@router.get("/tickets")
def list_my_tickets(
    limit: int = 10,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    rows = db.execute(
        select(Ticket)
        .where(Ticket.owner_id == identity.subject)
        .order_by(Ticket.id.desc())
        .limit(max(1, min(limit, 100)))
    ).scalars().all()
    return [_ticket_out(t) for t in rows]


@router.get("/tickets/{code}")
def get_my_ticket(
    code: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    t = db.execute(
        select(Ticket).where(Ticket.code == code, Ticket.owner_id == identity.subject)
    ).scalar_one_or_none()
    if t is None:
        raise NotFound("ticket not found")
    return _ticket_out(t)


@router.get("/purchases/{session_id}")
def get_my_purchase(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    p = db.execute(
        select(Purchase).where(Purchase.session_id == session_id, Purchase.buyer_id == identity.subject)
    ).scalar_one_or_none()
    if p is None:
        raise NotFound("purchase not found")

    tickets = db.execute(
        select(Ticket)
        .where(Ticket.session_id == session_id, Ticket.owner_id == identity.subject)
        .order_by(Ticket.id)
    ).scalars().all()
    return {
        "session_id": p.session_id,
        "event_ref": p.event_ref,
        "amount_total": p.amount_total,
        "currency": p.currency,
        "payment_status": p.payment_status,
        "ticket_ids": list(p.ticket_ids or []),
        "tickets": [_ticket_out(t) for t in tickets],
        "created_at": str(p.created_at),
    }
