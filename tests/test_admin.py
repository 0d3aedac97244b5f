import pytest

from tests.helpers import ADMIN, KIOSK, issue_tickets, redeem

pytestmark = pytest.mark.asyncio


async def test_admin_routes_require_admin_role(client):
    [code] = await issue_tickets(client, quantity=1)
    assert (await client.post(f"/admin/tickets/{code}/void", headers=KIOSK)).status_code == 403
    assert (await client.get("/admin/audit", headers=KIOSK)).status_code == 403
    assert (await client.get("/admin/audit")).status_code == 401


async def test_refund_then_redeem(client):
    [code] = await issue_tickets(client, quantity=1)
    r = (await client.post(f"/admin/tickets/{code}/refund", headers=ADMIN)).json()
    assert r == {"ok": True, "code": code, "status": "refunded"}

    assert (await redeem(client, code)).json() == {"ok": False, "code": "refunded"}

    # terminal: a later void does nothing
    r = (await client.post(f"/admin/tickets/{code}/void", headers=ADMIN)).json()
    assert r == {"ok": False, "code": code, "status": "refunded"}


async def test_void_unknown_ticket(client):
    r = await client.post("/admin/tickets/tkt_missing/void", headers=ADMIN)
    assert r.status_code == 404


async def test_event_ticket_listing_and_gate_filter(client):
    codes = await issue_tickets(client, session_id="cs_list", quantity=2, event_ref="evt_B")
    await redeem(client, codes[0], gate_id="north")
    await redeem(client, "tkt_bogus", gate_id="south")

    rows = (await client.get("/admin/events/evt_B/tickets", headers=ADMIN)).json()
    by_code = {r["code"]: r for r in rows}
    assert set(by_code) == set(codes)
    assert by_code[codes[0]]["status"] == "used"
    assert by_code[codes[0]]["redeemed_by_gate"] == "north"
    assert by_code[codes[1]]["status"] == "active"

    north = (await client.get("/admin/audit", params={"gate_id": "north"}, headers=ADMIN)).json()
    assert [x["outcome"] for x in north] == ["ok"]
    south = (await client.get("/admin/audit", params={"gate_id": "south"}, headers=ADMIN)).json()
    assert [x["outcome"] for x in south] == ["invalid"]


async def test_health(client):
    assert (await client.get("/health")).json()["status"] == "ok"
