"""Sign-in attempt variants.

The wire form is classified exactly once, at the API boundary, into one of the
tagged variants below. Downstream code dispatches on the variant type and
never re-inspects which optional fields happen to be filled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from portcullis.core.errors import InvalidRequest, SessionRequired
from portcullis.models.session import BrowserSession
from portcullis.schemas.auth import AuthForm

METHOD_SIGNUP = "signup"
METHOD_LINK = "link"


@dataclass(frozen=True)
class PasswordAttempt:
    organization: str
    username: str
    password: str
    captcha_type: str = ""
    captcha_token: str = ""


@dataclass(frozen=True)
class CodeAttempt:
    organization: str
    username: str
    code: str
    country_code: str = ""


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    code: str = ""
    saml_response: str = ""
    state: str = ""
    redirect_uri: str = ""
    method: str = METHOD_SIGNUP

    @property
    def is_signup(self) -> bool:
        return self.method == METHOD_SIGNUP


@dataclass(frozen=True)
class MfaContinuation:
    passcode: str = ""
    recovery_code: str = ""
    mfa_type: str = ""


@dataclass(frozen=True)
class QuickSessionAttempt:
    user_id: str


Attempt = Union[PasswordAttempt, CodeAttempt, ProviderAttempt, MfaContinuation, QuickSessionAttempt]


def classify(form: AuthForm, session: BrowserSession) -> Attempt:
    if form.username and form.provider:
        raise InvalidRequest("Ambiguous sign-in attempt: both a username and a provider were supplied")

    if form.username:
        if form.password:
            return PasswordAttempt(
                organization=form.organization,
                username=form.username,
                password=form.password,
                captcha_type=form.captcha_type,
                captcha_token=form.captcha_token,
            )
        if not form.code:
            raise InvalidRequest("Missing password or verification code")
        return CodeAttempt(
            organization=form.organization,
            username=form.username,
            code=form.code,
            country_code=form.country_code,
        )

    if form.provider:
        return ProviderAttempt(
            provider=form.provider,
            code=form.code,
            saml_response=form.saml_response,
            state=form.state,
            redirect_uri=form.redirect_uri,
            method=form.method or METHOD_SIGNUP,
        )

    if form.passcode or form.recovery_code:
        if not session.mfa_pending_user_id:
            raise SessionRequired("No multi-factor authentication is pending for this session")
        return MfaContinuation(
            passcode=form.passcode, recovery_code=form.recovery_code, mfa_type=form.mfa_type
        )

    if session.mfa_pending_user_id:
        raise InvalidRequest("Missing passcode or recovery code")

    if session.user_id:
        return QuickSessionAttempt(user_id=session.user_id)

    raise InvalidRequest("Unknown authentication type (not password or provider)")
