"""Access token verification.

Staff sign in through the hosted identity provider; this API never
issues or stores credentials. It only checks that the bearer token was
signed with the shared project secret and has not expired.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from canchaya.core.config import settings


@dataclass(frozen=True)
class StaffUser:
    id: str
    email: str | None = None


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
    )


def user_from_token(token: str) -> StaffUser:
    """Resolve the staff user a token belongs to. Raises JWTError on bad tokens."""
    payload = decode_token(token)
    subject = payload.get("sub")
    if not subject:
        raise JWTError("Token has no subject")
    return StaffUser(id=str(subject), email=payload.get("email"))


def create_access_token(subject: str, email: str | None = None, expires_minutes: int = 60) -> str:
    """Mint a token the way the identity provider does. Used by scripts and tests."""
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "aud": settings.jwt_audience, "exp": expire, "role": "authenticated"}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
