"""Tests for federated identity resolution against a mocked OIDC provider."""

from datetime import timedelta

import httpx
import pytest

from portcullis.core.config import get_settings
from portcullis.core.errors import (
    IdentityProviderError,
    InvalidRequest,
    ProviderNotFound,
    StateMismatch,
)
from portcullis.idp.saml import SAML_NS, SamlIdProvider
from portcullis.models.provider import Provider
from portcullis.signin.attempts import ProviderAttempt
from portcullis.signin.identity import IdentityResolver, capability_for

from conftest import REDIRECT_URI, replace_email, saml_response


def _attempt(**kw):
    defaults = {
        "provider": "acme-oidc",
        "code": "idp-code",
        "state": get_settings().auth_state,
        "redirect_uri": REDIRECT_URI,
    }
    defaults.update(kw)
    return ProviderAttempt(**defaults)


def _resolver(fake_idp) -> IdentityResolver:
    return IdentityResolver(transport=fake_idp.transport)


def test_capabilities():
    assert capability_for("OAuth").exchanges_code
    assert capability_for("SAML").lookup_by_subject
    assert not capability_for("SAML").checks_state
    with pytest.raises(ProviderNotFound):
        capability_for("Captcha")


@pytest.mark.asyncio
async def test_resolve_oauth_identity(seed, fake_idp):
    info = await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt())
    assert info.id == "ext-42"
    assert info.username == "bob"
    assert info.email == "bob@example.com"
    assert fake_idp.codes == ["idp-code"]


@pytest.mark.asyncio
async def test_application_name_is_accepted_as_state(seed, fake_idp):
    info = await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt(state="app-acme"))
    assert info.id == "ext-42"


@pytest.mark.asyncio
async def test_state_mismatch(seed, fake_idp):
    with pytest.raises(StateMismatch):
        await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt(state="forged"))
    assert fake_idp.codes == []


@pytest.mark.asyncio
async def test_missing_code(seed, fake_idp):
    with pytest.raises(InvalidRequest):
        await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt(code=""))


@pytest.mark.asyncio
async def test_provider_http_error(seed, fake_idp):
    fake_idp.token_status = 500
    with pytest.raises(IdentityProviderError):
        await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt())


@pytest.mark.asyncio
async def test_userinfo_without_subject(seed, fake_idp):
    fake_idp.userinfo = {"preferred_username": "anon"}
    with pytest.raises(IdentityProviderError, match="subject"):
        await _resolver(fake_idp).resolve(seed.application, seed.oidc, _attempt())


def _saml_attempt(response: str) -> ProviderAttempt:
    return _attempt(provider="acme-saml", code="", state="", saml_response=response)


def _strip_signature(assertion):
    assertion.remove(assertion.find("ds:Signature", SAML_NS))


@pytest.mark.asyncio
async def test_resolve_saml_assertion(seed, fake_idp, signing_keys):
    response = saml_response(signing_keys.idp_key, signing_keys.idp_cert, "carol", email="carol@example.com")
    info = await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))
    assert info.id == "carol"
    assert info.username == "carol"
    assert info.email == "carol@example.com"


@pytest.mark.asyncio
async def test_saml_signed_by_another_key(seed, fake_idp, signing_keys):
    # Signed with the application's key instead of the IdP's
    response = saml_response(signing_keys.app_key, signing_keys.app_cert, "carol")
    with pytest.raises(IdentityProviderError, match="signature"):
        await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))


@pytest.mark.asyncio
async def test_saml_attribute_edited_after_signing(seed, fake_idp, signing_keys):
    response = saml_response(
        signing_keys.idp_key,
        signing_keys.idp_cert,
        "mallory",
        email="mallory@example.com",
        tamper=replace_email("alice@example.com"),
    )
    with pytest.raises(IdentityProviderError, match="signature"):
        await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))


@pytest.mark.asyncio
async def test_saml_unsigned_assertion(seed, fake_idp, signing_keys):
    response = saml_response(signing_keys.idp_key, signing_keys.idp_cert, "carol", tamper=_strip_signature)
    with pytest.raises(IdentityProviderError, match="not signed"):
        await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))


@pytest.mark.asyncio
async def test_saml_requires_validity_window(seed, fake_idp, signing_keys):
    response = saml_response(signing_keys.idp_key, signing_keys.idp_cert, "carol", valid_for=None)
    with pytest.raises(IdentityProviderError, match="validity window"):
        await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))


@pytest.mark.asyncio
async def test_saml_expired_assertion(seed, fake_idp, signing_keys):
    response = saml_response(
        signing_keys.idp_key, signing_keys.idp_cert, "carol", valid_for=timedelta(minutes=-5)
    )
    with pytest.raises(IdentityProviderError, match="expired"):
        await _resolver(fake_idp).resolve(seed.application, seed.saml, _saml_attempt(response))


@pytest.mark.asyncio
async def test_saml_audience_mismatch(signing_keys):
    provider = Provider(
        name="p",
        category="SAML",
        type="SAML",
        certificate=signing_keys.idp_cert,
        audience="urn:me",
        attribute_mapping={},
    )
    keys = (signing_keys.idp_key, signing_keys.idp_cert)
    async with httpx.AsyncClient() as http:
        client = SamlIdProvider(provider, redirect_uri="", http_client=http)
        with pytest.raises(IdentityProviderError, match="audience"):
            await client.parse_assertion(saml_response(*keys, "dave", audience="urn:someone-else"))
        info = await client.parse_assertion(saml_response(*keys, "dave", audience="urn:me"))
    assert info.id == "dave"


@pytest.mark.asyncio
async def test_saml_provider_without_certificate():
    provider = Provider(name="p", category="SAML", type="SAML", attribute_mapping={})
    async with httpx.AsyncClient() as http:
        client = SamlIdProvider(provider, redirect_uri="", http_client=http)
        with pytest.raises(IdentityProviderError, match="certificate"):
            await client.parse_assertion("PHg+PC94Pg==")


@pytest.mark.asyncio
async def test_saml_login_url(seed, fake_idp):
    url = await _resolver(fake_idp).saml_login_url(seed.saml, "app-acme", "http://test/api/acs")
    assert url.startswith("https://idp.example.com/sso?SAMLRequest=")
    assert "RelayState=app-acme" in url
