from .errors import AuthorizationError
from .security import Actor


def require_role(actor: Actor, allowed_roles: list[str]):
    if not actor.roles:
        raise AuthorizationError("Roles missing in token")

    allowed = {r.lower() for r in allowed_roles}
    if actor.roles.isdisjoint(allowed):
        raise AuthorizationError("Access forbidden for this role")
