"""One-time verification codes sent to an email address or phone number.

Delivery is external: ``issue_verification_code`` only persists the code.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.config import get_settings
from portcullis.core.crypto import same
from portcullis.core.errors import InvalidOrExpiredCode
from portcullis.core.logging import get_logger
from portcullis.models.base import as_utc, utcnow
from portcullis.models.verification import VerificationCode

logger = get_logger(__name__)

CODE_LENGTH = 6


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


async def issue_verification_code(db: AsyncSession, destination: str) -> str:
    settings = get_settings()
    code = generate_code()
    db.add(
        VerificationCode(
            destination=destination,
            code=code,
            expires_at=utcnow() + timedelta(minutes=settings.verification_code_expire_minutes),
        )
    )
    await db.flush()
    logger.info("Verification code issued", destination=destination)
    return code


async def consume_verification_code(db: AsyncSession, destination: str, code: str) -> None:
    """Check *code* against the newest live code for *destination* and burn it.

    Raises InvalidOrExpiredCode on a wrong, expired, already used or concurrently
    consumed code.
    """
    result = await db.execute(
        select(VerificationCode)
        .where(
            VerificationCode.destination == destination,
            VerificationCode.consumed_at.is_(None),
        )
        .order_by(VerificationCode.created_at.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    if row is None or not code:
        raise InvalidOrExpiredCode()
    if as_utc(row.expires_at) <= utcnow():
        raise InvalidOrExpiredCode("Verification code has expired")
    if not same(row.code, code):
        raise InvalidOrExpiredCode("Wrong verification code")

    consumed = await db.execute(
        update(VerificationCode)
        .where(VerificationCode.id == row.id, VerificationCode.consumed_at.is_(None))
        .values(consumed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        raise InvalidOrExpiredCode()
