"""Issuance and one-time redemption of magic-link codes."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from fieldpost.core.errors import PersistenceError
from fieldpost.core.security import generate_auth_code
from fieldpost.models import AuthCode, Role, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthCodeValidation:
    """Outcome of redeeming a code. Only ``valid`` is set on failure."""

    valid: bool
    email: str | None = None
    role: Role | None = None
    submission_id: str | None = None


INVALID_CODE = AuthCodeValidation(valid=False)


class AuthCodeService:
    """Creates and consumes single-use authentication codes."""

    def __init__(self, session: AsyncSession, ttl: timedelta = timedelta(hours=4)):
        self.session = session
        self.ttl = ttl

    async def create_auth_code(
        self,
        email: str,
        role: Role,
        submission_id: str | None = None,
    ) -> str:
        """Persist a fresh code and return it for embedding in a link.

        Raises:
            PersistenceError: If the code could not be stored
        """
        code = AuthCode(
            code=generate_auth_code(),
            email=email,
            role=role,
            submission_id=submission_id,
            expires_at=utcnow() + self.ttl,
        )
        try:
            self.session.add(code)
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to store auth code for %s (%s)", email, role.value)
            await self.session.rollback()
            raise PersistenceError("Failed to create auth code") from e
        return code.code

    async def validate_auth_code(self, code: str, role: Role | None = None) -> AuthCodeValidation:
        """Redeem a code at most once.

        The code is marked used by a single conditional UPDATE, so concurrent
        redemptions of the same code cannot both succeed. Unknown, expired, used
        and role-mismatched codes all return ``INVALID_CODE`` without any write.
        """
        conditions = [
            AuthCode.code == code,
            AuthCode.used == False,  # noqa: E712
            AuthCode.expires_at > utcnow(),
        ]
        if role is not None:
            conditions.append(AuthCode.role == role)

        try:
            result = await self.session.execute(
                update(AuthCode)
                .where(*conditions)
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                return INVALID_CODE
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.exception("Failed to redeem auth code")
            await self.session.rollback()
            raise PersistenceError("Failed to validate code") from e

        row = await self.session.execute(select(AuthCode).where(AuthCode.code == code))
        redeemed = row.scalar_one()
        return AuthCodeValidation(
            valid=True,
            email=redeemed.email,
            role=redeemed.role,
            submission_id=redeemed.submission_id,
        )
