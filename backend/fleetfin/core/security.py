"""Security utilities: bearer token validation and tenant resolution."""

from dataclasses import dataclass

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from fleetfin.config import settings
from fleetfin.core.database import get_db
from fleetfin.core.exceptions import AuthError
from fleetfin.models.company import Profile

logger = structlog.get_logger()


@dataclass(frozen=True)
class Tenant:
    """The authenticated user and the company whose data they may touch."""

    user_id: str
    company_id: str


def decode_access_token(token: str) -> dict:
    """Decode and validate an HS256 access token issued by the auth provider."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except JWTError as e:
        raise AuthError("Invalid or expired token", error_code="INVALID_TOKEN") from e


# ── Auth Dependencies ─────────────────────────────
# auto_error=False so a missing header goes through the error envelope
security_scheme = HTTPBearer(auto_error=False)


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """FastAPI dependency: validate the bearer token and resolve the user's company."""
    if credentials is None:
        raise AuthError("Missing authorization header", error_code="MISSING_AUTHORIZATION")

    payload = decode_access_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Token missing subject", error_code="INVALID_TOKEN")

    profile = await db.get(Profile, user_id)
    if profile is None:
        logger.warning("profile_not_found", user_id=user_id)
        raise AuthError("No company profile for this user", error_code="PROFILE_NOT_FOUND")

    return Tenant(user_id=user_id, company_id=profile.company_id)
