"""One-time redemption of tickets at the gate.

Every call to ``redeem`` appends exactly one ``RedemptionAttempt`` row, in the
same transaction as the ticket patch when there is one. The active -> used
transition is a compare-and-set on the ticket row, so of any number of
concurrent scans of one code exactly one observes ``active``.
"""
import logging
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .db import run_in_transaction
from .errors import InvalidRequest
from .models import RedemptionAttempt, Ticket

logger = logging.getLogger(__name__)

RedeemCode = Literal["ok", "invalid", "already_used", "void", "refunded"]

# terminal ticket status -> code surfaced to the gate (and stored in the audit row)
TERMINAL_CODES = {"used": "already_used", "void": "void", "refunded": "refunded"}


class RedeemResult(BaseModel):
    ok: bool
    code: RedeemCode
    ticket_id: str | None = None


class PublicTicket(BaseModel):
    code: str
    event_ref: str
    status: str
    issued_at: datetime


def _required(value: str | None, name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidRequest(f"{name} is required")
    return value


def redeem(
    db: Session,
    ticket_code: str,
    gate_id: str,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
    actor_id: str | None = None,
) -> RedeemResult:
    ticket_code = _required(ticket_code, "ticket_code")
    gate_id = _required(gate_id, "gate_id")

    def work(db: Session) -> RedeemResult:
        now = datetime.now(timezone.utc)
        status = db.execute(select(Ticket.status).where(Ticket.code == ticket_code)).scalar_one_or_none()

        if status is None:
            result = RedeemResult(ok=False, code="invalid")
        else:
            claimed = db.execute(
                update(Ticket)
                .where(Ticket.code == ticket_code, Ticket.status == "active")
                .values(status="used", redeemed_at=now, redeemed_by_gate=gate_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed == 1:
                result = RedeemResult(ok=True, code="ok", ticket_id=ticket_code)
            else:
                # lost the race or was never active: re-read, never re-apply
                status = db.execute(select(Ticket.status).where(Ticket.code == ticket_code)).scalar_one()
                result = RedeemResult(ok=False, code=TERMINAL_CODES.get(status, "already_used"))

        db.add(RedemptionAttempt(
            ticket_code=ticket_code,
            gate_id=gate_id,
            actor_id=actor_id,
            ip=ip,
            user_agent=user_agent,
            outcome=result.code,
            attempted_at=now,
        ))
        return result

    result = run_in_transaction(db, work)
    if result.ok:
        logger.info("redeemed gate_id=%s", gate_id)
    else:
        logger.info("redeem rejected gate_id=%s code=%s", gate_id, result.code)
    return result


def _set_terminal(db: Session, ticket_code: str, status: str) -> tuple[str | None, bool]:
    def work(db: Session) -> tuple[str | None, bool]:
        changed = db.execute(
            update(Ticket)
            .where(Ticket.code == ticket_code, Ticket.status == "active")
            .values(status=status)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        current = db.execute(select(Ticket.status).where(Ticket.code == ticket_code)).scalar_one_or_none()
        return current, changed

    current, changed = run_in_transaction(db, work)
    if changed:
        logger.info("ticket marked %s", status)
    return current, changed


def void_ticket(db: Session, ticket_code: str) -> tuple[str | None, bool]:
    """Administratively void an active ticket.

    Returns ``(status, changed)``; ``status`` is ``None`` for unknown codes.
    """
    return _set_terminal(db, _required(ticket_code, "ticket_code"), "void")


def refund_ticket(db: Session, ticket_code: str) -> tuple[str | None, bool]:
    return _set_terminal(db, _required(ticket_code, "ticket_code"), "refunded")


def get_public_ticket(db: Session, ticket_code: str) -> PublicTicket | None:
    t = db.execute(
        select(Ticket).where(Ticket.code == ticket_code).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if t is None:
        return None
    return PublicTicket(code=t.code, event_ref=t.event_ref, status=t.status, issued_at=t.issued_at)


def list_attempts(
    db: Session,
    ticket_code: str | None = None,
    gate_id: str | None = None,
    limit: int = 80,
) -> list[RedemptionAttempt]:
    q = select(RedemptionAttempt)
    if ticket_code:
        q = q.where(RedemptionAttempt.ticket_code == ticket_code)
    if gate_id:
        q = q.where(RedemptionAttempt.gate_id == gate_id)
    q = q.order_by(RedemptionAttempt.id.desc()).limit(limit)
    return list(db.execute(q).scalars().all())
