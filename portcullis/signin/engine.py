"""Sign-in orchestration.

``SigninEngine.complete_login`` drives one classified attempt through
identification, account resolution, the policy gates and MFA to a single
outcome; ``continue_mfa`` resumes an attempt halted for a second factor.
Failures are raised as ``SigninError`` subclasses.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portcullis.core.config import Settings, get_settings
from portcullis.core.errors import ProviderNotEnabled, SessionRequired, SignOutRequired
from portcullis.core.logging import get_logger
from portcullis.core.registry import IdpRegistry
from portcullis.models.application import Application
from portcullis.models.session import BrowserSession
from portcullis.models.user import User
from portcullis.schemas.auth import ProtocolParams
from portcullis.signin.accounts import AccountResolver
from portcullis.signin.attempts import (
    Attempt,
    CodeAttempt,
    MfaContinuation,
    PasswordAttempt,
    ProviderAttempt,
    QuickSessionAttempt,
)
from portcullis.signin.captcha import CaptchaGate, CaptchaVerifier
from portcullis.signin.credentials import CredentialVerifier
from portcullis.signin.dispatch import RESPONSE_LOGIN, ResponseDispatcher, check_response_type
from portcullis.signin.identity import IdentityResolver
from portcullis.signin.mfa import MfaCoordinator
from portcullis.signin.outcomes import Artifact, Outcome, Success
from portcullis.signin.policy import PolicyGate
from portcullis.signin.recorder import SessionRecorder, SigninEvent
from portcullis.signin.store import get_application, get_organization, get_provider, get_provider_item

logger = get_logger(__name__)

RESPONSE_LINK = "link"


@dataclass(frozen=True)
class ApplicationRef:
    """Application addressed by name, or by OAuth client id when given."""

    name: str = ""
    client_id: str = ""


class SigninEngine:
    def __init__(
        self,
        db: AsyncSession,
        *,
        recorder: SessionRecorder,
        registry: IdpRegistry | None = None,
        captcha_verifier: CaptchaVerifier | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
        idp_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.recorder = recorder
        self.captcha = CaptchaGate(db, captcha_verifier)
        self.credentials = CredentialVerifier(db, self.captcha, session_factory)
        self.identities = IdentityResolver(registry, self.settings, idp_transport)
        self.accounts = AccountResolver(db)
        self.policy = PolicyGate(db)
        self.mfa = MfaCoordinator(db)
        self.dispatcher = ResponseDispatcher(db)

    async def complete_login(
        self,
        app_ref: ApplicationRef,
        attempt: Attempt,
        response_type: str,
        params: ProtocolParams,
        session: BrowserSession,
        client_ip: str | None = None,
    ) -> Outcome:
        if isinstance(attempt, MfaContinuation):
            return await self.continue_mfa(session, attempt, client_ip)

        check_response_type(response_type)
        application = await get_application(
            self.db, name=app_ref.name, client_id=app_ref.client_id
        )

        if isinstance(attempt, QuickSessionAttempt):
            user = await self._session_user(attempt.user_id)
            if user is None:
                session.user_id = None
                raise SessionRequired("The signed-in user no longer exists")
            if session.mfa_setup_required:
                # Provisional session: the MFA stage runs again before anything is issued
                return await self._finish(application, user, response_type, params, session, client_ip)
            self.policy.check_access(application, user)
            return await self._complete(application, user, response_type, params, session, client_ip)

        if isinstance(attempt, ProviderAttempt):
            return await self._provider_login(
                application, attempt, response_type, params, session, client_ip
            )

        if response_type == RESPONSE_LOGIN and session.user_id:
            raise SignOutRequired()
        if isinstance(attempt, PasswordAttempt):
            user = await self.credentials.verify_password(application, attempt)
        elif isinstance(attempt, CodeAttempt):
            user = await self.credentials.verify_code(application, attempt)
        else:
            raise TypeError(f"Unhandled attempt type {type(attempt).__name__}")
        return await self._finish(application, user, response_type, params, session, client_ip)

    async def continue_mfa(
        self,
        session: BrowserSession,
        continuation: MfaContinuation,
        client_ip: str | None = None,
    ) -> Outcome:
        if not session.mfa_pending_user_id:
            raise SessionRequired("The MFA session has expired, please sign in again")
        user = await self._session_user(session.mfa_pending_user_id)
        if user is None:
            session.clear_mfa()
            raise SessionRequired("The MFA session has expired, please sign in again")

        # A failed verification leaves the pending marker in place
        await self.mfa.verify(user, continuation)

        request = session.mfa_pending_request or {}
        session.clear_mfa()
        application = await get_application(self.db, name=request.get("application", ""))
        self.policy.check_access(application, user)
        params = ProtocolParams.model_validate(request.get("params") or {})
        response_type = request.get("responseType") or RESPONSE_LOGIN
        logger.info("MFA verified", user=user.key, application=application.name)
        return await self._complete(application, user, response_type, params, session, client_ip)

    async def _session_user(self, user_id: str) -> User | None:
        user = await self.db.get(User, user_id)
        if user is None or user.is_deleted:
            return None
        return user

    async def _provider_login(
        self,
        application: Application,
        attempt: ProviderAttempt,
        response_type: str,
        params: ProtocolParams,
        session: BrowserSession,
        client_ip: str | None,
    ) -> Outcome:
        provider = await get_provider(self.db, attempt.provider)
        item = await get_provider_item(self.db, application, provider.name)
        if item is None:
            raise ProviderNotEnabled(
                f"The provider: {provider.name} is not enabled for the application"
            )
        info = await self.identities.resolve(application, provider, attempt)

        if not attempt.is_signup:
            if not session.user_id:
                raise SessionRequired("Please sign in before linking an account")
            user = await self._session_user(session.user_id)
            if user is None:
                raise SessionRequired("The signed-in user no longer exists")
            linked = await self.accounts.link_identity(user, provider.type, info)
            await self.accounts.sync_profile(user, provider.type, info)
            return Success(Artifact(RESPONSE_LINK, linked), user.id)

        user = await self.accounts.resolve(application, provider, info)
        created = False
        if user is None:
            organization = await get_organization(self.db, application.organization)
            user = await self.accounts.provision(application, organization, item, provider, info)
            created = True
        elif not item.can_signin:
            raise ProviderNotEnabled(
                f"The provider: {provider.name} is not allowed to sign in for the application"
            )

        await self.accounts.sync_profile(user, provider.type, info)
        await self.accounts.link_identity(user, provider.type, info)
        if created:
            self.recorder.submit(
                SigninEvent(
                    organization=user.organization,
                    user=user.name,
                    application=application.name,
                    action="signup",
                    client_ip=client_ip,
                    record_session=False,
                )
            )
        return await self._finish(application, user, response_type, params, session, client_ip)

    async def _finish(
        self,
        application: Application,
        user: User,
        response_type: str,
        params: ProtocolParams,
        session: BrowserSession,
        client_ip: str | None,
    ) -> Outcome:
        """Run the access gates and MFA, then complete."""
        self.policy.check_access(application, user)
        organization = await get_organization(self.db, user.organization)
        pending_request = {
            "application": application.name,
            "responseType": response_type,
            "params": params.model_dump(),
        }
        halted = await self.mfa.begin(session, organization, application, user, pending_request)
        if halted is not None:
            return halted
        return await self._complete(application, user, response_type, params, session, client_ip)

    async def _complete(
        self,
        application: Application,
        user: User,
        response_type: str,
        params: ProtocolParams,
        session: BrowserSession,
        client_ip: str | None,
    ) -> Outcome:
        plan = await self.policy.check_subscription(application, user)
        if plan is not None:
            return plan

        artifact = await self.dispatcher.dispatch(application, user, response_type, params, session)
        self.recorder.submit(
            SigninEvent(
                organization=user.organization,
                user=user.name,
                application=application.name,
                session_id=session.id,
                client_ip=client_ip,
            )
        )
        logger.info("User signed in", user=user.key, application=application.name)
        return Success(artifact, user.id)
