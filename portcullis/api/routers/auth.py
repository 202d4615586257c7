"""Auth router: sign-in, sign-out, MFA abort and the login-page helpers."""

from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from portcullis.api.dependencies import (
    DbDep,
    EngineDep,
    ParamsDep,
    SessionDep,
    client_ip,
    set_session_cookie,
)
from portcullis.core.config import get_settings
from portcullis.core.errors import InvalidClient, ProviderNotEnabled
from portcullis.core.limiter import limiter, login_rate_limit
from portcullis.core.logging import get_logger
from portcullis.models.provider import CATEGORY_SAML
from portcullis.schemas.auth import ApplicationLoginOut, AuthForm, CaptchaStatus, LoginResponse
from portcullis.signin.attempts import classify
from portcullis.signin.dispatch import RESPONSE_CODE, check_response_type
from portcullis.signin.engine import ApplicationRef
from portcullis.signin.outcomes import (
    AwaitMfaChallenge,
    Outcome,
    PromptMfaSetup,
    SelectPlan,
    Success,
)
from portcullis.signin.protocols import redirect_uri_allowed
from portcullis.signin.store import (
    get_application,
    get_provider,
    get_provider_item,
    get_provider_items,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def to_response(outcome: Outcome) -> LoginResponse:
    if isinstance(outcome, Success):
        return LoginResponse(
            outcome=outcome.name, data=outcome.artifact.data, data2=outcome.artifact.data2
        )
    if isinstance(outcome, SelectPlan):
        return LoginResponse(
            outcome=outcome.name,
            msg="Please select a plan",
            data=outcome.pricing,
            data2=outcome.subscription,
        )
    if isinstance(outcome, AwaitMfaChallenge):
        return LoginResponse(outcome=outcome.name, msg="Multi-factor verification required", data=outcome.params)
    if isinstance(outcome, PromptMfaSetup):
        return LoginResponse(outcome=outcome.name, msg="Please set up multi-factor authentication", data=outcome.user_id)
    raise TypeError(f"Unhandled outcome {type(outcome).__name__}")


@router.post("/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)
async def login(
    request: Request,
    response: Response,
    form: AuthForm,
    params: ParamsDep,
    session: SessionDep,
    engine: EngineDep,
) -> LoginResponse:
    """Sign in with a password, a code, a provider callback, an MFA passcode or the current session."""
    attempt = classify(form, session)
    params = params.model_copy(update={"auto_signin": form.auto_signin})
    outcome = await engine.complete_login(
        ApplicationRef(name=form.application, client_id=params.client_id),
        attempt,
        form.type,
        params,
        session,
        client_ip(request),
    )
    set_session_cookie(response, session)
    return to_response(outcome)


@router.post("/logout")
async def logout(response: Response, session: SessionDep) -> dict[str, str]:
    user_id = session.user_id
    session.user_id = None
    session.clear_mfa()
    set_session_cookie(response, session)
    if user_id:
        logger.info("User signed out", user_id=user_id)
    return {"status": "ok"}


@router.post("/mfa/abort")
async def abort_mfa(response: Response, session: SessionDep, engine: EngineDep) -> dict[str, str]:
    engine.mfa.abort(session)
    set_session_cookie(response, session)
    return {"status": "ok"}


@router.get("/get-app-login", response_model=ApplicationLoginOut)
async def get_app_login(
    db: DbDep,
    application: str = "",
    client_id: Annotated[str, Query(alias="clientId")] = "",
    response_type: Annotated[str, Query(alias="responseType")] = "login",
    redirect_uri: Annotated[str, Query(alias="redirectUri")] = "",
) -> ApplicationLoginOut:
    """Application shown by the login page, after validating the OAuth request."""
    check_response_type(response_type)
    app = await get_application(db, name=application, client_id=client_id)
    if response_type == RESPONSE_CODE and not redirect_uri_allowed(app, redirect_uri):
        raise InvalidClient(
            f"Redirect URI: {redirect_uri} doesn't exist in the allowed Redirect URI list"
        )
    providers = [
        {
            "name": provider.name,
            "displayName": provider.display_name,
            "category": provider.category,
            "type": provider.type,
            "canSignIn": item.can_signin,
            "canSignUp": item.can_signup,
            "rule": item.rule,
        }
        for item, provider in await get_provider_items(db, app)
    ]
    out = ApplicationLoginOut.model_validate(app)
    out.providers = providers
    return out


@router.get("/get-captcha-status", response_model=CaptchaStatus)
async def get_captcha_status(
    engine: EngineDep, organization: str, username: str
) -> CaptchaStatus:
    return CaptchaStatus(enabled=await engine.captcha.limit_reached(organization, username))


@router.get("/get-saml-login")
async def get_saml_login(
    db: DbDep,
    engine: EngineDep,
    provider: str,
    application: str,
    relay_state: Annotated[str, Query(alias="relayState")] = "",
) -> dict:
    app = await get_application(db, name=application)
    row = await get_provider(db, provider)
    if row.category != CATEGORY_SAML or await get_provider_item(db, app, row.name) is None:
        raise ProviderNotEnabled(f"The SAML provider: {provider} is not enabled for the application")
    acs_url = f"{get_settings().origin}/api/acs"
    url = await engine.identities.saml_login_url(row, relay_state or app.name, acs_url)
    return {"status": "ok", "data": url, "data2": "GET"}


def _frontend_redirect(path: str, query: dict[str, str]) -> RedirectResponse:
    url = f"{get_settings().origin}{path}?{urlencode(query)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.post("/Callback")
async def callback(
    code: Annotated[str, Form()] = "",
    state: Annotated[str, Form()] = "",
) -> RedirectResponse:
    """Form-post OAuth callback, bounced to the frontend callback page."""
    return _frontend_redirect("/callback", {"code": code, "state": state})


@router.post("/acs")
async def assertion_consumer(
    saml_response: Annotated[str, Form(alias="SAMLResponse")] = "",
    relay_state: Annotated[str, Form(alias="RelayState")] = "",
) -> RedirectResponse:
    """SAML HTTP-POST binding endpoint, bounced to the frontend callback page."""
    return _frontend_redirect(
        "/callback/saml", {"relayState": relay_state, "samlResponse": saml_response}
    )
