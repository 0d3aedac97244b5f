import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from . import config, ledger
from .deps import get_db, get_redis
from .errors import NotConfigured
from .idempotency import get_cached_response, set_cached_response
from .issuance import issue, record_purchase, verify_issue_token
from .payments import (
    ASYNC_PAYMENT_FAILED,
    HANDLED_EVENT_TYPES,
    CheckoutEvent,
    parse_checkout_event,
    parse_envelope,
    verify_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def fulfill(db: Session, event: CheckoutEvent) -> dict:
    s = event.session
    common = {
        "session_id": s.id,
        "event_ref": s.metadata.event_ref,
        "buyer_id": s.client_reference_id,
        "amount_total": s.amount_total or 0,
        "currency": s.currency or "usd",
        "customer_id": s.customer,
    }

    if event.type == ASYNC_PAYMENT_FAILED:
        purchase = record_purchase(db, payment_status="failed", **common)
        return {"payment_status": purchase.payment_status, "minted": 0}

    # completed (possibly still unpaid) or async_payment_succeeded
    paid = event.type != "checkout.session.completed" or s.payment_status == "paid"
    if not paid:
        purchase = record_purchase(db, payment_status=s.payment_status, **common)
        return {"payment_status": purchase.payment_status, "minted": 0}

    if not config.ISSUE_TOKEN:
        # no ledger row is written, so Stripe redelivers once the token is set
        logger.error("cannot fulfil session_id=%s: ISSUE_TOKEN is not set", s.id)
        raise NotConfigured("ISSUE_TOKEN is not configured")

    result = issue(
        db,
        token=config.ISSUE_TOKEN,
        quantity=s.metadata.quantity,
        occurred_at=datetime.fromtimestamp(event.created, tz=timezone.utc),
        **common,
    )
    return {"payment_status": "paid", "minted": result.minted, "ticket_count": len(result.ticket_ids)}


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
):
    payload = await request.body()
    verify_webhook(payload, stripe_signature)
    env = parse_envelope(payload)

    if ledger.seen(db, env.id):
        logger.info("stripe event already processed event_id=%s", env.id)
        return {"ok": True, "duplicate": True}

    if env.type in HANDLED_EVENT_TYPES:
        outcome = fulfill(db, parse_checkout_event(payload))
    else:
        logger.info("ignoring stripe event type=%s", env.type)
        outcome = {"ignored": env.type}

    # written last: a failure above leaves no row, so Stripe's redelivery is processed
    ledger.record(db, env)
    return {"ok": True, **outcome}


class IssueReq(BaseModel):
    session_id: str
    event_ref: str
    buyer_id: str
    quantity: int
    amount_total: int = 0
    currency: str = "usd"
    occurred_at: datetime | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None


@router.post("/internal/issue")
async def internal_issue(
    req: IssueReq,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    issue_token: str | None = Header(default=None, alias="X-Issue-Token"),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    # check trust before touching the cache so cached bodies never leak
    verify_issue_token(issue_token)

    if idempotency_key:
        cached = await get_cached_response(redis, "issue", idempotency_key)
        if cached:
            return cached

    result = issue(db, token=issue_token, **req.model_dump())
    resp = {"ok": True, **result.model_dump()}
    if idempotency_key:
        await set_cached_response(redis, "issue", idempotency_key, resp)
    return resp
