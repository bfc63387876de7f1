from __future__ import annotations

from .domain import Principal, normalize_code
from .errors import AdminRequiredError, AuthenticationError
from .store import Store

BEARER_PREFIX = "Bearer "


def resolve_principal(store: Store, authorization: str | None) -> Principal:
    """Turn an `Authorization: Bearer <access code>` header into a principal.

    Issuing codes is outside this service; a code is valid when a user record
    exists for it.
    """

    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthenticationError("an access token is required")
    code = normalize_code(authorization[len(BEARER_PREFIX) :])
    if not code:
        raise AuthenticationError("an access token is required")

    user = store.get_user(code)
    if user is None:
        raise AuthenticationError("invalid access token")
    return Principal(uid=user.unique_code, role=user.role, team_id=user.team_id)


def require_admin(principal: Principal) -> Principal:
    if principal.role != "admin":
        raise AdminRequiredError("admin role required")
    return principal
