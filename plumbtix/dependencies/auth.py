from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from plumbtix.tickets.models import Actor
from plumbtix.tickets.state import UserRole


@dataclass(frozen=True)
class User:
    """Simple representation of an authenticated user."""

    user_id: str
    role: UserRole
    email: str
    full_name: str
    company_id: str | None = None

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role, email=self.email, full_name=self.full_name)


# Development tokens; real deployments resolve sessions with the identity provider.
TOKEN_USER_MAP: dict[str, User] = {
    "proroto-admin-token": User(
        "00000000-0000-0000-0000-000000000001", UserRole.PROROTO_ADMIN, "dispatch@proroto.com", "Pro Roto Dispatch"
    ),
    "pm-admin-token": User(
        "00000000-0000-0000-0000-000000000002", UserRole.PM_ADMIN, "pm.admin@example.com", "PM Admin",
        company_id="00000000-0000-0000-0000-0000000000c1",
    ),
    "pm-user-token": User(
        "00000000-0000-0000-0000-000000000003", UserRole.PM_USER, "pm.user@example.com", "PM User",
        company_id="00000000-0000-0000-0000-0000000000c1",
    ),
    "resident-token": User(
        "00000000-0000-0000-0000-000000000004", UserRole.RESIDENT, "resident@example.com", "Resident",
    ),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User | None:
    """Return the user for a bearer token, ``None`` for anonymous requests."""

    if token is None:
        return None

    user = TOKEN_USER_MAP.get(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Authentication stub mapping static bearer tokens to known users."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    request.state.user = user
    return user


def role_required(*roles: UserRole) -> Callable[[User], User]:
    """Dependency factory ensuring the current user holds one of the roles."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
