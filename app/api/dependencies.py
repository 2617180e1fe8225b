"""
FastAPI dependencies.

SEOWorks calls authenticate with a shared x-api-key; dashboard users carry a
session JWT (bearer header or cookie). Also hands out the mapping registry
and a per-request SEOWorks client.
"""

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import get_settings
from app.db.models import User
from app.db.session import get_write_db
from app.models.api import UserRole
from app.services.auth import SessionTokenService
from app.services.property_mapping import PropertyMappingRegistry, get_property_mappings
from app.services.seoworks_client import SEOWorksClient

logger = get_logger(__name__)

# Bearer token scheme for session JWTs
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# SEOWorks webhook authentication
# ============================================================================


async def verify_seoworks_api_key(x_api_key: str | None = Header(None)) -> None:
    """
    Require the shared SEOWorks secret in the x-api-key header.

    Raises:
        HTTPException 401 if the header is missing or does not match
    """
    expected = get_settings().seoworks_webhook_secret
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("seoworks_webhook_auth_failed", has_key=x_api_key is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


# ============================================================================
# Dashboard session authentication
# ============================================================================


def get_session_token_service() -> SessionTokenService:
    settings = get_settings()
    return SessionTokenService(
        jwt_secret=settings.jwt_secret, jwt_expire_hours=settings.jwt_expire_hours
    )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_write_db),
    token_service: SessionTokenService = Depends(get_session_token_service),
) -> User:
    """
    Get the authenticated dashboard user.

    Checks the Authorization header first, then the session cookie.

    Raises:
        HTTPException(401): no token, invalid token, or unknown user
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(get_settings().session_cookie_name)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = token_service.verify_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await token_service.get_user_by_id(db, str(payload["sub"]))
    if user is None:
        logger.warning("session_user_not_found", user_id=str(payload["sub"]))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def require_super_admin(user: User = Depends(get_current_user)) -> User:
    """
    Require SUPER_ADMIN role.

    Raises:
        HTTPException(403): caller is not a super admin
    """
    if user.role != UserRole.SUPER_ADMIN.value:
        logger.warning("super_admin_required", user_id=user.id, role=user.role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin access required",
        )
    return user


# ============================================================================
# Service collaborators
# ============================================================================


def get_mappings() -> PropertyMappingRegistry:
    return get_property_mappings()


async def get_seoworks_client() -> AsyncGenerator[SEOWorksClient, None]:
    client = SEOWorksClient()
    try:
        yield client
    finally:
        await client.close()
