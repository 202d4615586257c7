"""Primary-factor verification: password or one-time code."""

from __future__ import annotations

import asyncio
import math
from datetime import timedelta
from weakref import WeakValueDictionary

import phonenumbers
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from portcullis.core.auth import verify_password as check_password_hash
from portcullis.core.database import get_session_factory
from portcullis.core.errors import (
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidPhoneNumber,
    InvalidRequest,
    TooManyAttempts,
    UserNotFound,
)
from portcullis.core.logging import get_logger
from portcullis.models.application import Application
from portcullis.models.base import as_utc, utcnow
from portcullis.models.user import User
from portcullis.signin.attempts import CodeAttempt, PasswordAttempt
from portcullis.signin.captcha import CaptchaGate
from portcullis.signin.codes import consume_verification_code
from portcullis.signin.store import failed_signin_policy, get_user_by_fields

logger = get_logger(__name__)

# One lock per user id, alive while some coroutine holds a reference to it
_user_locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()


def _lock_for(user_id: str) -> asyncio.Lock:
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock
    return lock


def normalize_destination(username: str, country_code: str | None) -> str:
    """Email addresses pass through; anything else is parsed as a phone number into E.164."""
    username = username.strip()
    if "@" in username:
        return username
    region = (country_code or "").upper() or None
    try:
        number = phonenumbers.parse(username, region)
    except phonenumbers.NumberParseException as exc:
        raise InvalidPhoneNumber(f"Phone number is invalid in your region {region or ''}".strip()) from exc
    if not phonenumbers.is_valid_number(number):
        raise InvalidPhoneNumber(f"Phone number is invalid in your region {region or ''}".strip())
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)


class CredentialVerifier:
    """Checks passwords and codes, and owns the per-user failed-signin counter.

    Counter writes and code consumption go through their own short-lived
    sessions so a failed request's rollback never undoes them.
    """

    def __init__(
        self,
        db: AsyncSession,
        captcha: CaptchaGate,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.db = db
        self.captcha = captcha
        self.session_factory = session_factory or get_session_factory()

    async def verify_password(self, application: Application, attempt: PasswordAttempt) -> User:
        if not application.enable_password:
            raise InvalidRequest(
                "The login method: login with password is not enabled for the application"
            )
        organization = attempt.organization or application.organization
        solved = await self.captcha.check(
            application,
            organization,
            attempt.username,
            attempt.captcha_type,
            attempt.captcha_token,
        )
        user = await self._get_user(organization, attempt.username)
        limit, frozen = await failed_signin_policy(self.db, organization)
        if not solved:
            await self._check_lockout(user, limit, frozen)

        if not user.password_hash or not check_password_hash(attempt.password, user.password_hash):
            count = await self.record_failure(user)
            remaining = max(limit - count, 0)
            logger.info("Password rejected", user=user.key, failed_count=count)
            raise InvalidCredentials(
                f"Password or code is incorrect, you have {remaining} remaining chances",
                data={"remaining": remaining},
            )

        await self.reset_failures(user)
        return user

    async def verify_code(self, application: Application, attempt: CodeAttempt) -> User:
        if not application.enable_code_signin:
            raise InvalidRequest(
                "The login method: login with code is not enabled for the application"
            )
        organization = attempt.organization or application.organization
        user = await self._get_user(organization, attempt.username)
        limit, frozen = await failed_signin_policy(self.db, organization)
        await self._check_lockout(user, limit, frozen)

        destination = normalize_destination(
            attempt.username, attempt.country_code or user.country_code
        )
        try:
            await self._burn_code(destination, attempt.code)
        except InvalidOrExpiredCode:
            count = await self.record_failure(user)
            logger.info("Verification code rejected", user=user.key, failed_count=count)
            raise

        await self.reset_failures(user)
        return user

    async def _burn_code(self, destination: str, code: str) -> None:
        # Committed on its own: a later gate failure must not make the code reusable
        async with self.session_factory() as session:
            await consume_verification_code(session, destination, code)
            await session.commit()

    async def _get_user(self, organization: str, username: str) -> User:
        user = await get_user_by_fields(self.db, organization, username)
        if user is None or user.is_deleted:
            raise UserNotFound(f"The user: {organization}/{username} doesn't exist")
        return user

    async def _check_lockout(self, user: User, limit: int, frozen_minutes: int) -> None:
        if user.failed_signin_count < limit:
            return
        last = user.last_failed_signin_at
        if last is not None:
            unlock_at = as_utc(last) + timedelta(minutes=frozen_minutes)
            now = utcnow()
            if unlock_at > now:
                minutes = math.ceil((unlock_at - now).total_seconds() / 60)
                raise TooManyAttempts(
                    "You have entered the wrong password or code too many times, "
                    f"please wait for {minutes} minutes and try again"
                )
        await self.reset_failures(user)

    async def record_failure(self, user: User) -> int:
        """Atomically increment the counter and return its new value."""
        user_id = user.id
        async with _lock_for(user_id):
            async with self.session_factory() as session:
                await session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(
                        failed_signin_count=User.failed_signin_count + 1,
                        last_failed_signin_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(
                    select(User.failed_signin_count, User.last_failed_signin_at).where(
                        User.id == user_id
                    )
                )
                count, last_failed = result.one()
                await session.commit()
        set_committed_value(user, "failed_signin_count", count)
        set_committed_value(user, "last_failed_signin_at", last_failed)
        return count

    async def reset_failures(self, user: User) -> None:
        if user.failed_signin_count == 0 and user.last_failed_signin_at is None:
            return
        async with _lock_for(user.id):
            async with self.session_factory() as session:
                await session.execute(
                    update(User)
                    .where(User.id == user.id)
                    .values(failed_signin_count=0, last_failed_signin_at=None)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        set_committed_value(user, "failed_signin_count", 0)
        set_committed_value(user, "last_failed_signin_at", None)
