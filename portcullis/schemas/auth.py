"""Schemas for the sign-in API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AuthForm(BaseModel):
    """Flat wire form posted by the login page.

    Which fields are populated decides the attempt kind; see
    ``portcullis.signin.attempts.classify``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = "login"
    application: str = ""
    organization: str = ""

    username: str = ""
    password: str = ""
    code: str = ""
    country_code: str = ""

    provider: str = ""
    client_id: str = ""
    state: str = ""
    redirect_uri: str = ""
    method: str = "signup"
    saml_response: str = ""

    captcha_type: str = ""
    captcha_token: str = ""

    passcode: str = ""
    recovery_code: str = ""
    mfa_type: str = ""

    auto_signin: bool = True


class ProtocolParams(BaseModel):
    """Per-protocol request parameters carried alongside an attempt."""

    client_id: str = ""
    redirect_uri: str = ""
    scope: str = ""
    state: str = ""
    nonce: str = ""
    code_challenge_method: str = ""
    code_challenge: str = ""
    saml_request: str = ""
    relay_state: str = ""
    service: str = ""
    auto_signin: bool = True


class LoginResponse(BaseModel):
    status: str = "ok"
    # "success" | "select_plan" | "await_mfa_challenge" | "prompt_mfa_setup"
    outcome: str
    msg: str = ""
    data: Any = None
    data2: Any = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    id_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int
    scope: str = ""


class CaptchaStatus(BaseModel):
    enabled: bool


class WebhookTicket(BaseModel):
    ticket: str
    expires_in: int


class WebhookEvent(BaseModel):
    ticket: str
    event: str | None = None


class ApplicationLoginOut(BaseModel):
    """Application as shown to the login page, secrets masked."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    organization: str
    display_name: str | None = None
    client_id: str
    enable_password: bool
    enable_code_signin: bool
    enable_signup: bool
    grant_types: list[str] = Field(default_factory=list)
    providers: list[dict[str, Any]] = Field(default_factory=list)
