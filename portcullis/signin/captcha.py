"""Captcha gate: decide whether an attempt must solve a captcha, and verify it."""

from __future__ import annotations

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.config import get_settings
from portcullis.core.crypto import decrypt
from portcullis.core.errors import VerificationFailed
from portcullis.core.logging import get_logger
from portcullis.models.application import (
    CAPTCHA_RULE_ALWAYS,
    CAPTCHA_RULE_DYNAMIC,
    Application,
    ApplicationProvider,
)
from portcullis.models.provider import CATEGORY_CAPTCHA, Provider
from portcullis.signin.store import failed_signin_policy, get_provider_items, get_user_by_fields

logger = get_logger(__name__)

# Site-verify endpoints; all take form fields `secret` + `response`
# and answer {"success": bool, ...}.
CAPTCHA_BACKENDS: dict[str, str] = {
    "reCAPTCHA": "https://www.recaptcha.net/recaptcha/api/siteverify",
    "hCaptcha": "https://hcaptcha.com/siteverify",
    "Cloudflare Turnstile": "https://challenges.cloudflare.com/turnstile/v0/siteverify",
}


class CaptchaVerifier:
    """Site-verify client for the captcha backends above."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def verify(self, captcha_type: str, token: str, secret: str) -> bool:
        url = CAPTCHA_BACKENDS.get(captcha_type)
        if url is None:
            raise VerificationFailed(f"Unsupported captcha type: {captcha_type}")
        if not token:
            return False
        try:
            async with httpx.AsyncClient(
                timeout=get_settings().idp_timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(url, data={"secret": secret, "response": token})
                resp.raise_for_status()
                return bool(resp.json().get("success"))
        except (httpx.HTTPError, ValueError) as exc:
            raise VerificationFailed(f"Captcha verification error: {exc}") from exc


class CaptchaGate:
    def __init__(self, db: AsyncSession, verifier: CaptchaVerifier | None = None) -> None:
        self.db = db
        self.verifier = verifier or CaptchaVerifier()

    async def _captcha_item(
        self, application: Application
    ) -> tuple[ApplicationProvider, Provider] | None:
        items = await get_provider_items(self.db, application, category=CATEGORY_CAPTCHA)
        return items[0] if items else None

    async def limit_reached(self, organization: str, username: str) -> bool:
        user = await get_user_by_fields(self.db, organization, username)
        if user is None:
            return False
        limit, _ = await failed_signin_policy(self.db, organization)
        return user.failed_signin_count >= limit

    async def should_challenge(
        self, application: Application, organization: str, username: str
    ) -> bool:
        found = await self._captcha_item(application)
        if found is None:
            return False
        item, _ = found
        if item.rule == CAPTCHA_RULE_ALWAYS:
            return True
        if item.rule == CAPTCHA_RULE_DYNAMIC:
            return await self.limit_reached(organization, username)
        return False

    async def check(
        self,
        application: Application,
        organization: str,
        username: str,
        captcha_type: str,
        token: str,
    ) -> bool:
        """Run the gate. Returns True when a captcha was required and solved."""
        if not await self.should_challenge(application, organization, username):
            return False
        _, provider = await self._captcha_item(application)
        secret = decrypt(provider.client_secret) if provider.client_secret else ""
        is_human = await self.verifier.verify(captcha_type or provider.type, token, secret)
        if not is_human:
            logger.info("Captcha rejected", application=application.name, username=username)
            raise VerificationFailed()
        return True
