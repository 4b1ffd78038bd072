import os
from typing import Any, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .models import Role
from .state_machine import Action, Actor

# MUST MATCH the identity service that issues the tokens
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-smart-meeting-room-key")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

security = HTTPBearer()


def actor_from_claims(payload: Dict[str, Any]) -> Actor:
    """
    Build an :class:`Actor` from decoded JWT claims.

    ``email`` falls back to ``userEmail`` and ``sub``; ``user_id`` to
    ``id``, ``employeeId`` and the email itself. Unknown role strings are
    treated as a plain employee.
    """
    email = payload.get("email") or payload.get("userEmail") or payload.get("sub")
    role = payload.get("role")
    if not email or role is None:
        raise ValueError("token is missing email or role")

    user_id = payload.get("user_id") or payload.get("id") or payload.get("employeeId") or email
    return Actor(
        user_id=str(user_id),
        email=str(email).lower(),
        role=Role.parse(role),
        name=payload.get("name"),
        employee_id=payload.get("employee_id") or payload.get("employeeId"),
        department=payload.get("department"),
    )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Decode a JWT bearer token into the acting user.

    Parameters
    ----------
    credentials : HTTPAuthorizationCredentials
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    Actor
        Identity and role of the caller.

    Raises
    ------
    HTTPException
        401 if the token is invalid or lacks an email/role claim.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        return actor_from_claims(payload)
    except (JWTError, ValueError):
        raise credentials_exception


def require_elevated(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency allowing only manager, hr and admin callers."""
    if not actor.can(Action.APPROVE):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )
    return actor
