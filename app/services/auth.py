"""
Session token service.

Dashboard sessions are HS256 JWTs whose subject is the user ID.
"""

from datetime import UTC, datetime, timedelta

import jwt
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import User

logger = get_logger(__name__)


class SessionTokenService:
    """Issues and verifies session JWTs."""

    def __init__(self, jwt_secret: str, jwt_expire_hours: int = 24):
        self.jwt_secret = jwt_secret
        self.jwt_expire_hours = jwt_expire_hours

    def create_token(self, user: User) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(hours=self.jwt_expire_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> dict[str, str | int] | None:
        """Verify a session JWT and return its payload, or None."""
        try:
            payload: dict[str, str | int] = jwt.decode(
                token, self.jwt_secret, algorithms=["HS256"]
            )
            return payload
        except jwt.ExpiredSignatureError:
            logger.warning("session_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("session_token_invalid", error=str(e))
            return None

    async def get_user_by_id(self, db: AsyncSession, user_id: str) -> User | None:
        return await db.get(User, user_id)
