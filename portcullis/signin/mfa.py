"""Second-factor coordination: prompt, challenge, verify, enroll."""

from __future__ import annotations

import secrets
from typing import Any

import pyotp
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.crypto import decrypt, digest, encrypt
from portcullis.core.errors import InvalidOrExpiredCode, InvalidRequest, MfaVerificationFailed
from portcullis.core.logging import get_logger
from portcullis.models.application import Application
from portcullis.models.mfa import MFA_TYPE_APP, MFA_TYPE_EMAIL, MFA_TYPE_SMS, MfaFactor
from portcullis.models.organization import Organization
from portcullis.models.session import BrowserSession
from portcullis.models.user import User
from portcullis.signin.attempts import MfaContinuation
from portcullis.signin.codes import consume_verification_code, issue_verification_code
from portcullis.signin.outcomes import AwaitMfaChallenge, PromptMfaSetup

logger = get_logger(__name__)

RECOVERY_CODE_COUNT = 5


def mask_destination(destination: str | None) -> str:
    if not destination:
        return ""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(destination) <= 7:
        return "*" * len(destination)
    return f"{destination[:3]}****{destination[-4:]}"


def generate_recovery_code() -> str:
    raw = secrets.token_hex(4)
    return f"{raw[:4]}-{raw[4:]}"


def public_params(factor: MfaFactor) -> dict[str, Any]:
    return {
        "mfaType": factor.mfa_type,
        "destination": mask_destination(factor.destination),
        "isPreferred": factor.is_preferred,
    }


class MfaCoordinator:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def factors(self, user: User) -> list[MfaFactor]:
        result = await self.db.execute(
            select(MfaFactor)
            .where(MfaFactor.user_id == user.id, MfaFactor.enabled.is_(True))
            .order_by(MfaFactor.created_at)
        )
        return list(result.scalars())

    @staticmethod
    def preferred_factor(factors: list[MfaFactor], mfa_type: str = "") -> MfaFactor | None:
        if mfa_type:
            return next((f for f in factors if f.mfa_type == mfa_type), None)
        return next((f for f in factors if f.is_preferred), None) or (factors[0] if factors else None)

    @staticmethod
    def mandated(organization: Organization | None, application: Application) -> bool:
        return application.mfa_required or bool(organization and organization.mfa_required)

    async def begin(
        self,
        session: BrowserSession,
        organization: Organization | None,
        application: Application,
        user: User,
        pending_request: dict[str, Any],
    ) -> AwaitMfaChallenge | PromptMfaSetup | None:
        """Decide whether the attempt halts for MFA. ``None`` means carry on."""
        factors = await self.factors(user)
        if not factors:
            if self.mandated(organization, application):
                # Signed in just enough to reach the enrollment page
                session.user_id = user.id
                session.mfa_setup_required = True
                logger.info("MFA enrollment required", user=user.key)
                return PromptMfaSetup(user_id=user.id)
            session.mfa_setup_required = False
            return None

        factor = self.preferred_factor(factors)
        session.mfa_pending_user_id = user.id
        session.mfa_pending_request = pending_request
        if factor.mfa_type in (MFA_TYPE_SMS, MFA_TYPE_EMAIL) and factor.destination:
            await issue_verification_code(self.db, factor.destination)
        logger.info("MFA challenge issued", user=user.key, mfa_type=factor.mfa_type)
        return AwaitMfaChallenge(params=public_params(factor))

    async def verify(self, user: User, continuation: MfaContinuation) -> None:
        if continuation.recovery_code:
            await self._use_recovery_code(user, continuation.recovery_code)
            return
        if not continuation.passcode:
            raise InvalidRequest("Missing passcode or recovery code")

        factor = self.preferred_factor(await self.factors(user), continuation.mfa_type)
        if factor is None:
            raise MfaVerificationFailed("No multi-factor method is enrolled")

        if factor.mfa_type == MFA_TYPE_APP:
            totp = pyotp.TOTP(decrypt(factor.secret or ""))
            if not totp.verify(continuation.passcode, valid_window=1):
                raise MfaVerificationFailed("Passcode is incorrect")
            return
        try:
            await consume_verification_code(self.db, factor.destination or "", continuation.passcode)
        except InvalidOrExpiredCode as exc:
            raise MfaVerificationFailed(exc.message) from exc

    async def _use_recovery_code(self, user: User, code: str) -> None:
        hashed = digest(code.strip())
        remaining = [c for c in user.recovery_codes or [] if c != hashed]
        if len(remaining) == len(user.recovery_codes or []):
            raise MfaVerificationFailed("Recovery code is incorrect")
        user.recovery_codes = remaining
        await self.db.flush()
        logger.info("Recovery code used", user=user.key, remaining=len(remaining))

    def abort(self, session: BrowserSession) -> None:
        session.clear_mfa()

    async def _add_factor(self, user: User, factor: MfaFactor) -> list[str]:
        factor.is_preferred = not await self.factors(user)
        self.db.add(factor)
        codes = [generate_recovery_code() for _ in range(RECOVERY_CODE_COUNT)]
        user.recovery_codes = [digest(c) for c in codes]
        await self.db.flush()
        logger.info("MFA factor enrolled", user=user.key, mfa_type=factor.mfa_type)
        return codes

    async def enroll_totp(self, user: User) -> tuple[str, list[str]]:
        """Enroll an authenticator-app factor. Returns the seed and fresh recovery codes."""
        secret = pyotp.random_base32()
        codes = await self._add_factor(
            user, MfaFactor(user_id=user.id, mfa_type=MFA_TYPE_APP, secret=encrypt(secret))
        )
        return secret, codes

    async def enroll_code_factor(self, user: User, mfa_type: str, destination: str) -> list[str]:
        if mfa_type not in (MFA_TYPE_SMS, MFA_TYPE_EMAIL):
            raise InvalidRequest(f"Unsupported MFA type: {mfa_type}")
        return await self._add_factor(
            user, MfaFactor(user_id=user.id, mfa_type=mfa_type, destination=destination)
        )

    @staticmethod
    def provisioning_uri(secret: str, user: User, issuer: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(name=user.key, issuer_name=issuer)
