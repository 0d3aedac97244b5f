"""Stripe boundary: webhook verification, strict event parsing, checkout sessions.

Nothing here touches the database. Verified events are parsed into the
pydantic models below before any business logic sees them; a handled event
type with an unexpected shape is rejected rather than guessed at.
"""
import hashlib
import json
import logging
from typing import Literal

import stripe
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import config
from .errors import InvalidRequest, NotConfigured, PaymentProviderError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
HANDLED_EVENT_TYPES = (CHECKOUT_COMPLETED, ASYNC_PAYMENT_SUCCEEDED, ASYNC_PAYMENT_FAILED)

PaymentStatus = Literal["paid", "unpaid", "no_payment_required", "processing", "failed"]


class SessionMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_ref: str = Field(min_length=1)
    quantity: int = Field(gt=0)


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(pattern=r"^cs_")
    client_reference_id: str = Field(min_length=1)
    metadata: SessionMetadata
    amount_total: int | None = None
    currency: str | None = None
    payment_status: PaymentStatus
    customer: str | None = None


class CheckoutEventData(BaseModel):
    object: CheckoutSession


class CheckoutEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    type: Literal[
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
        "checkout.session.async_payment_failed",
    ]
    created: int
    data: CheckoutEventData

    @property
    def session(self) -> CheckoutSession:
        return self.data.object


class EventEnvelope(BaseModel):
    """Minimal shape of any verified event, used for the ledger."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    type: str
    created: int = 0
    session_id: str | None = None
    client_reference_id: str | None = None
    payload_digest: str


def verify_webhook(payload: bytes, sig_header: str | None) -> None:
    if not sig_header:
        raise InvalidRequest("missing stripe signature")
    if not config.STRIPE_WEBHOOK_SECRET:
        raise NotConfigured("STRIPE_WEBHOOK_SECRET is not configured")
    try:
        stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError:
        raise InvalidRequest("invalid stripe signature")
    except ValueError:
        raise InvalidRequest("invalid payload")


def parse_envelope(payload: bytes) -> EventEnvelope:
    try:
        raw = json.loads(payload)
    except ValueError:
        raise InvalidRequest("invalid payload")
    if not isinstance(raw, dict):
        raise InvalidRequest("invalid payload")

    data = raw.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = {}
    try:
        return EventEnvelope(
            id=raw.get("id") or "",
            type=raw.get("type") or "",
            created=raw.get("created") or 0,
            session_id=obj.get("id") if isinstance(obj.get("id"), str) else None,
            client_reference_id=obj.get("client_reference_id") if isinstance(obj.get("client_reference_id"), str) else None,
            payload_digest=hashlib.sha256(payload).hexdigest(),
        )
    except ValidationError:
        raise InvalidRequest("invalid event envelope")


def parse_checkout_event(payload: bytes) -> CheckoutEvent:
    try:
        return CheckoutEvent.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("rejected checkout event: %d validation errors", e.error_count())
        raise InvalidRequest("malformed checkout event")


def create_checkout_session(*, price_id: str, quantity: int, event_ref: str, buyer_id: str) -> dict:
    try:
        session = stripe.checkout.Session.create(
            api_key=config.STRIPE_SECRET_KEY,
            mode="payment",
            line_items=[{"price": price_id, "quantity": quantity}],
            success_url=f"{config.SITE_URL}/checkout-succeeded?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{config.SITE_URL}/buy",
            client_reference_id=buyer_id,
            metadata={"event_ref": event_ref, "quantity": str(quantity)},
        )
    except stripe.StripeError as e:
        logger.error("stripe checkout create failed: %s", e)
        raise PaymentProviderError("checkout session could not be created")
    return {"session_id": session.id, "url": session.url}


def retrieve_checkout_session(session_id: str):
    try:
        return stripe.checkout.Session.retrieve(session_id, api_key=config.STRIPE_SECRET_KEY)
    except stripe.StripeError as e:
        logger.error("stripe checkout retrieve failed: %s", e)
        raise PaymentProviderError("checkout session could not be retrieved")
