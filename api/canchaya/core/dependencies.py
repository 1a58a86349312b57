"""FastAPI dependencies for injection into route handlers."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from canchaya.core.auth import StaffUser, user_from_token
from canchaya.services.change_feed import ChangeFeed

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> StaffUser:
    """Extract and validate the current staff user from the JWT bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        return user_from_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_change_feed(request: Request) -> ChangeFeed:
    """The change feed owned by the running application."""
    return request.app.state.change_feed
