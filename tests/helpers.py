import hashlib
import hmac
import json
import os
import time

import httpx

from rodeo_gate.security import mint_identity_token

ISSUE_TOKEN = os.environ["ISSUE_TOKEN"]


def bearer(sub: str, *roles: str) -> dict:
    token = mint_identity_token(sub, list(roles), os.environ["AUTH_JWT_SECRET"])
    return {"Authorization": f"Bearer {token}"}


KIOSK = bearer("kiosk_front", "kiosk")
ADMIN = bearer("admin_1", "admin")


def stripe_headers(payload: bytes, secret: str | None = None) -> dict:
    secret = secret or os.environ["STRIPE_WEBHOOK_SECRET"]
    ts = int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


def checkout_event(
    event_id: str,
    session_id: str,
    buyer_id: str = "user_1",
    event_ref: str = "evt_A",
    quantity="2",
    payment_status: str = "paid",
    event_type: str = "checkout.session.completed",
    amount_total: int = 8500,
) -> bytes:
    metadata = {"event_ref": event_ref}
    if quantity is not None:
        metadata["quantity"] = quantity
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "client_reference_id": buyer_id,
                "metadata": metadata,
                "amount_total": amount_total,
                "currency": "usd",
                "payment_status": payment_status,
                "customer": None,
            }
        },
    }).encode("utf-8")


async def deliver(client: httpx.AsyncClient, payload: bytes) -> httpx.Response:
    return await client.post("/stripe/webhook", content=payload, headers=stripe_headers(payload))


async def issue_tickets(client: httpx.AsyncClient, session_id="cs_1", buyer_id="user_1", quantity=2, event_ref="evt_A"):
    r = await client.post(
        "/internal/issue",
        json={"session_id": session_id, "event_ref": event_ref, "buyer_id": buyer_id, "quantity": quantity,
              "amount_total": 8500, "currency": "usd"},
        headers={"X-Issue-Token": ISSUE_TOKEN},
    )
    r.raise_for_status()
    data = r.json()
    assert data.get("ok") is True, data
    return data["ticket_ids"]


async def redeem(client: httpx.AsyncClient, code: str, gate_id: str = "gate_1", headers: dict | None = None):
    return await client.post(
        "/tickets/redeem",
        json={"ticket_code": code, "gate_id": gate_id},
        headers=headers or KIOSK,
    )
