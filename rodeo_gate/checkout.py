from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from . import config
from .deps import get_current_identity
from .errors import InvalidRequest, NotFound
from .payments import create_checkout_session, retrieve_checkout_session
from .security import Identity

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutReq(BaseModel):
    price_id: str
    quantity: int = 1


@router.post("")
async def start_checkout(req: CheckoutReq, identity: Identity = Depends(get_current_identity)):
    event_ref = config.event_ref_for_price(req.price_id)
    if event_ref is None:
        raise InvalidRequest("unknown price_id")
    if req.quantity < 1:
        raise InvalidRequest("quantity must be positive")
    quantity = min(req.quantity, config.MAX_TICKETS_PER_CHECKOUT)

    session = create_checkout_session(
        price_id=req.price_id,
        quantity=quantity,
        event_ref=event_ref,
        buyer_id=identity.subject,
    )
    return {"ok": True, "quantity": quantity, "event_ref": event_ref, **session}


@router.get("/session")
async def checkout_status(
    session_id: str = Query(...),
    identity: Identity = Depends(get_current_identity),
):
    if not session_id.startswith("cs_"):
        raise InvalidRequest("missing or invalid session_id")

    session = retrieve_checkout_session(session_id)
    if getattr(session, "client_reference_id", None) != identity.subject:
        raise NotFound("checkout session not found")

    status = getattr(session, "status", None)
    payment_status = getattr(session, "payment_status", None)
    return {
        "ok": True,
        "paid": status == "complete" and payment_status == "paid",
        "session": {
            "id": session.id,
            "status": status,
            "payment_status": payment_status,
        },
    }
