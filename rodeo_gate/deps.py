"""FastAPI dependencies shared by the routers."""
from typing import Iterator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from . import config
from .db import SessionLocal
from .errors import Forbidden, Unauthorized
from .security import Identity, verify_identity_token

bearer = HTTPBearer(auto_error=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def client_ip(request: Request) -> str:
    """Caller address as reported by the first ``X-Forwarded-For`` hop, for the audit trail."""
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit_key(request: Request) -> str:
    # X-Forwarded-For is client-controlled; only honour the hop appended by a trusted proxy
    peer = request.client.host if request.client else "unknown"
    fwd = request.headers.get("x-forwarded-for")
    if fwd and peer in config.TRUSTED_PROXIES:
        return fwd.split(",")[-1].strip() or peer
    return peer


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Identity:
    if credentials is None:
        raise Unauthorized("missing bearer token")
    return verify_identity_token(credentials.credentials, config.AUTH_JWT_SECRET)


def require_role(role: str):
    async def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not identity.has_role(role):
            raise Forbidden(f"role {role!r} required")
        return identity

    return checker


require_kiosk = require_role("kiosk")
require_admin = require_role("admin")
