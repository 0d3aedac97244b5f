import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from . import config
from .admin import router as admin_router
from .buyers import router as buyers_router
from .checkout import router as checkout_router
from .db import Base, engine
from .deps import client_ip, get_current_identity, get_db, get_redis, rate_limit_key, require_kiosk
from .errors import GateError
from .rate_limit import allow_gate_request
from .redemption import get_public_ticket, redeem
from .security import Identity
from .webhooks import router as webhooks_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rodeo Gate", version="1.0.0")

app.state.redis = Redis.from_url(config.REDIS_URL, decode_responses=False)

app.include_router(webhooks_router)
app.include_router(checkout_router)
app.include_router(buyers_router)
app.include_router(admin_router)

# Create DB tables (migrations are out of scope; create_all is idempotent)
Base.metadata.create_all(bind=engine)

if not config.ISSUE_TOKEN:
    logger.error("ISSUE_TOKEN is not set: paid checkout events will be rejected until it is configured")


@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.code})


def _rate_limited() -> JSONResponse:
    return JSONResponse(status_code=429, content={"ok": False, "error": "rate_limited"})


class RedeemReq(BaseModel):
    ticket_code: str
    gate_id: str


@app.post("/tickets/redeem")
async def redeem_ticket(
    req: RedeemReq,
    request: Request,
    identity: Identity = Depends(require_kiosk),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    if not await allow_gate_request(redis, "redeem", rate_limit_key(request)):
        return _rate_limited()

    # business outcomes (invalid, already_used, void, refunded) are 200s
    result = redeem(
        db,
        req.ticket_code,
        req.gate_id,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        actor_id=identity.subject,
    )
    return result.model_dump(exclude_none=True)


@app.get("/tickets/validate")
async def validate_ticket(
    code: str,
    request: Request,
    _: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    if not await allow_gate_request(redis, "validate", rate_limit_key(request)):
        return _rate_limited()

    ticket = get_public_ticket(db, code.strip())
    if ticket is None:
        return {"ok": True, "found": False}
    return {"ok": True, "found": True, "ticket": ticket.model_dump(mode="json")}


@app.get("/health")
async def health():
    return {"status": "ok", "service": "rodeo-gate"}
