"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mideeye.core.security import NotAuthenticatedError, decode_access_token
from mideeye.db.session import get_db
from mideeye.models import Profile

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
CredentialsDep = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_optional(credentials: CredentialsDep, db: SessionDep) -> Profile | None:
    """Resolve the caller's profile, or ``None`` for anonymous requests.

    Raises:
        HTTPException: If a token is supplied but invalid or unknown.
    """
    if credentials is None:
        return None
    try:
        user_id = decode_access_token(credentials.credentials)
    except NotAuthenticatedError as err:
        raise _unauthorized() from err

    user = db.query(Profile).filter(Profile.id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_user(
    user: Annotated[Profile | None, Depends(get_current_user_optional)],
) -> Profile:
    """Require an authenticated profile."""
    if user is None:
        raise _unauthorized("Not authenticated")
    return user


# Type alias for the current user dependency
CurrentUserDep = Annotated[Profile, Depends(get_current_user)]
