"""Ticket issuance for paid checkout sessions.

Payment-completion events arrive at least once, so ``issue`` is written to be
re-run freely: the number of tickets for a session only ever grows to the
largest quantity seen, and the purchase row keeps the union of every code ever
minted for it.
"""
import hmac
import logging
import secrets
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from . import config
from .db import run_in_transaction
from .errors import InvalidQuantity, InvalidRequest, Unauthorized
from .models import PAYMENT_STATUSES, Purchase, Ticket

logger = logging.getLogger(__name__)

CODE_PREFIX = "tkt_"


class IssueResult(BaseModel):
    session_id: str
    ticket_ids: list[str]
    minted: int


def new_ticket_code() -> str:
    # 24 random bytes -> 192 bits from the OS CSPRNG
    return CODE_PREFIX + secrets.token_urlsafe(24)


def verify_issue_token(token: str | None, expected: str | None = None) -> None:
    expected = config.ISSUE_TOKEN if expected is None else expected
    if not expected or not token or not hmac.compare_digest(token, expected):
        raise Unauthorized("invalid issuance token")


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity("quantity must be a positive integer")
    return quantity


def _merge_ids(existing: list[str] | None, new: list[str]) -> list[str]:
    merged = list(existing or [])
    seen = set(merged)
    for code in new:
        if code not in seen:
            merged.append(code)
            seen.add(code)
    return merged


def _lock_purchase(db: Session, session_id: str, defaults: dict) -> Purchase:
    """Return the purchase for ``session_id`` write-locked, inserting it first if needed.

    The guarded UPDATE is the first statement of the transaction, so the write
    lock is held before any count or read that follows: a row lock on server
    databases, the database write lock on SQLite (whose driver only opens a
    transaction at the first write). A concurrent insert of the same session
    surfaces as IntegrityError and the caller retries.
    """
    locked = db.execute(
        update(Purchase)
        .where(Purchase.session_id == session_id)
        .values(updated_at=func.now())
        .execution_options(synchronize_session=False)
    ).rowcount
    if locked:
        return db.execute(
            select(Purchase)
            .where(Purchase.session_id == session_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    purchase = Purchase(session_id=session_id, ticket_ids=[], **defaults)
    db.add(purchase)
    db.flush()
    return purchase


def issue(
    db: Session,
    *,
    token: str | None,
    session_id: str,
    event_ref: str,
    buyer_id: str,
    quantity: int,
    amount_total: int = 0,
    currency: str = "usd",
    occurred_at: datetime | None = None,
    customer_id: str | None = None,
    valid_from: datetime | None = None,
    valid_to: datetime | None = None,
) -> IssueResult:
    verify_issue_token(token)
    quantity = _check_quantity(quantity)
    if not session_id:
        raise InvalidRequest("session_id is required")

    issued_at = occurred_at or datetime.now(timezone.utc)
    currency = (currency or "usd").lower()

    def work(db: Session) -> IssueResult:
        purchase = _lock_purchase(db, session_id, {
            "buyer_id": buyer_id,
            "event_ref": event_ref,
            "amount_total": amount_total,
            "currency": currency,
            "payment_status": "paid",
            "customer_id": customer_id,
        })

        existing = db.execute(
            select(Ticket.code).where(Ticket.session_id == session_id).order_by(Ticket.id)
        ).scalars().all()

        remaining = max(0, quantity - len(existing))
        minted = [new_ticket_code() for _ in range(remaining)]
        db.add_all([
            Ticket(
                code=code,
                event_ref=event_ref,
                owner_id=buyer_id,
                session_id=session_id,
                status="active",
                issued_at=issued_at,
                valid_from=valid_from,
                valid_to=valid_to,
            )
            for code in minted
        ])

        purchase.ticket_ids = _merge_ids(_merge_ids(purchase.ticket_ids, list(existing)), minted)
        purchase.payment_status = "paid"
        purchase.amount_total = amount_total
        purchase.currency = currency
        if customer_id:
            purchase.customer_id = customer_id
        db.flush()

        return IssueResult(session_id=session_id, ticket_ids=purchase.ticket_ids, minted=len(minted))

    result = run_in_transaction(db, work)
    if result.minted:
        logger.info("issued session_id=%s minted=%d total=%d", session_id, result.minted, len(result.ticket_ids))
    else:
        logger.info("issue no-op session_id=%s total=%d", session_id, len(result.ticket_ids))
    return result


def record_purchase(
    db: Session,
    *,
    session_id: str,
    event_ref: str,
    buyer_id: str,
    payment_status: str,
    amount_total: int = 0,
    currency: str = "usd",
    customer_id: str | None = None,
) -> Purchase:
    """Upsert a purchase that has not (yet) been paid. Mints nothing.

    A purchase already marked ``paid`` keeps that status: a late or reordered
    ``unpaid``/``failed`` event never takes back issued tickets.
    """
    if payment_status not in PAYMENT_STATUSES:
        raise InvalidRequest(f"unknown payment_status {payment_status!r}")
    if not session_id:
        raise InvalidRequest("session_id is required")

    def work(db: Session) -> Purchase:
        purchase = _lock_purchase(db, session_id, {
            "buyer_id": buyer_id,
            "event_ref": event_ref,
            "amount_total": amount_total,
            "currency": (currency or "usd").lower(),
            "payment_status": payment_status,
            "customer_id": customer_id,
        })
        if purchase.payment_status != "paid":
            purchase.payment_status = payment_status
        db.flush()
        return purchase

    purchase = run_in_transaction(db, work)
    logger.info("purchase recorded session_id=%s payment_status=%s", session_id, purchase.payment_status)
    return purchase


def count_tickets(db: Session, session_id: str) -> int:
    return db.execute(
        select(func.count()).select_from(Ticket).where(Ticket.session_id == session_id)
    ).scalar_one()
