"""
Admin access gate for the metrics endpoint.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

import jwt
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..exceptions import ComputationError, Forbidden, Unauthenticated
from ..models import Profile, UserRole
from .logging_service import get_logger, user_id_var

logger = get_logger("access")


@dataclass(frozen=True)
class AuthorizedCaller:
    user_id: uuid.UUID


class AccessGate:
    """
    Resolves a bearer token to a profile and checks its admin role claim.

    Nothing downstream runs unless authorize() returns.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        jwt_secret: str,
        algorithm: str = "HS256",
        admin_role: str = "admin",
    ):
        self.session_factory = session_factory
        self.jwt_secret = jwt_secret
        self.algorithm = algorithm
        self.admin_role = admin_role

    def _decode(self, token: str) -> uuid.UUID:
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.algorithm],
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError:
            raise Unauthenticated("Authentication failed")

        subject = payload.get("sub")
        if not subject:
            raise Unauthenticated("Authentication failed")
        try:
            return uuid.UUID(str(subject))
        except ValueError:
            raise Unauthenticated("Authentication failed")

    async def authorize(self, token: Optional[str]) -> AuthorizedCaller:
        """
        Raises:
            Unauthenticated: Missing or invalid token, or unknown user
            Forbidden: Known user without the admin role
            ComputationError: The profile or role tables could not be read
        """
        if not token:
            raise Unauthenticated("No authorization header")

        user_id = self._decode(token)

        try:
            async with self.session_factory() as session:
                profile_id = await session.scalar(sa.select(Profile.id).where(Profile.id == user_id))
                role = None
                if profile_id is not None:
                    role = await session.scalar(
                        sa.select(UserRole.id).where(
                            UserRole.user_id == user_id,
                            UserRole.role == self.admin_role,
                        )
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Role lookup failed", extra={"caller": str(user_id), "error": repr(e)})
            raise ComputationError("Authorization lookup failed") from e

        if profile_id is None:
            raise Unauthenticated("Authentication failed")

        if role is None:
            logger.warning("Non-admin caller rejected", extra={"caller": str(user_id)})
            raise Forbidden("Access denied - admin only")

        user_id_var.set(str(user_id))
        logger.log_step("Admin verified", caller=str(user_id))
        return AuthorizedCaller(user_id=user_id)
