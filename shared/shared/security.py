from dataclasses import dataclass

from jose import jwt, JWTError
from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import JWT_SECRET, JWT_ALGORITHM
from .errors import AuthenticationError

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

ALLOWED_ROLES = {"client", "provider", "admin"}

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Identity and role claims verified once from the bearer token."""

    sub: str
    roles: frozenset[str]
    token: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


def issue_token(sub: str, roles: list[str], **claims) -> str:
    payload = {"sub": sub, "roles": roles, **claims}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str | None) -> Actor:
    if not token:
        raise AuthenticationError("Missing Bearer token")

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Token has no subject")

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        roles = []
    normalized = {str(r).strip().lower() for r in roles} & ALLOWED_ROLES
    return Actor(sub=str(sub), roles=frozenset(normalized), token=token)


def get_current_actor(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    actor = decode_token(token)
    request.state.user_sub = actor.sub
    request.state.user_roles = sorted(actor.roles)
    return actor
