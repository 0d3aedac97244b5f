from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JWTError

from .errors import Unauthorized

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    subject: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def verify_identity_token(token: str, secret: str) -> Identity:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("INVALID_TOKEN")

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise Unauthorized("EXPIRED")

    sub = payload.get("sub")
    if not sub or not isinstance(sub, str):
        raise Unauthorized("INVALID_TOKEN")

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        raise Unauthorized("INVALID_TOKEN")

    return Identity(subject=sub, roles=frozenset(str(r) for r in roles))


def mint_identity_token(subject: str, roles: list[str], secret: str, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {"sub": subject, "roles": list(roles), "exp": exp}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)
