"""Tests for response dispatch and the OAuth / SAML / CAS artifacts."""

import base64
import zlib

import httpx
import pytest
from lxml import etree

from portcullis.core.auth import decode_token
from portcullis.core.errors import (
    GrantTypeNotAllowed,
    IdentityProviderError,
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidSamlRequest,
    UnsupportedResponseType,
)
from portcullis.idp.saml import SAML_NS, SamlIdProvider, verify_assertion
from portcullis.models.provider import Provider
from portcullis.schemas.auth import ProtocolParams
from portcullis.signin.dispatch import ResponseDispatcher, check_response_type
from portcullis.signin.protocols import (
    cas_response_xml,
    exchange_code,
    parse_saml_request,
    pkce_challenge,
    redirect_uri_allowed,
    validate_service_ticket,
)

from conftest import REDIRECT_URI

SP_ISSUER = "https://sp.example.com"


def _saml_request(acs_url: str = REDIRECT_URI) -> str:
    xml = (
        '<samlp:AuthnRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" ID="_req-1" Version="2.0" '
        f'AssertionConsumerServiceURL="{acs_url}">'
        f"<saml:Issuer>{SP_ISSUER}</saml:Issuer></samlp:AuthnRequest>"
    )
    compressor = zlib.compressobj(wbits=-15)
    return base64.b64encode(compressor.compress(xml.encode()) + compressor.flush()).decode()


def _code_params(**kw) -> ProtocolParams:
    return ProtocolParams(client_id="acme-client", redirect_uri=REDIRECT_URI, state="xyz", **kw)


def test_unknown_response_type():
    with pytest.raises(UnsupportedResponseType):
        check_response_type("device_code")


@pytest.mark.asyncio
async def test_redirect_uri_patterns(seed):
    assert redirect_uri_allowed(seed.application, REDIRECT_URI)
    assert not redirect_uri_allowed(seed.application, REDIRECT_URI + "/evil")
    assert not redirect_uri_allowed(seed.application, "https://appXexample.com/callback")
    assert not redirect_uri_allowed(seed.application, "")


@pytest.mark.asyncio
async def test_login_response_signs_session_in(db_session, seed, browser_session):
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "login", ProtocolParams(auto_signin=False), browser_session
    )
    assert artifact.data == seed.alice.id
    assert browser_session.user_id == seed.alice.id
    assert browser_session.remember is False


@pytest.mark.asyncio
async def test_code_does_not_sign_session_in(db_session, seed, browser_session):
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "code", _code_params(), browser_session
    )
    assert artifact.data2 == {"state": "xyz"}
    assert browser_session.user_id is None


@pytest.mark.asyncio
async def test_code_requires_known_client_and_redirect(db_session, seed, browser_session):
    dispatcher = ResponseDispatcher(db_session)
    with pytest.raises(InvalidClient):
        await dispatcher.dispatch(
            seed.application, seed.alice, "code", ProtocolParams(client_id="other", redirect_uri=REDIRECT_URI), browser_session
        )
    with pytest.raises(InvalidClient):
        await dispatcher.dispatch(
            seed.application, seed.alice, "code", ProtocolParams(client_id="acme-client", redirect_uri="https://evil.example.com"), browser_session
        )
    with pytest.raises(InvalidRequest):
        await dispatcher.dispatch(
            seed.application, seed.alice, "code", _code_params(code_challenge_method="plain"), browser_session
        )


@pytest.mark.asyncio
async def test_code_exchange(db_session, seed, browser_session):
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "code", _code_params(scope="openid profile", nonce="n-1"), browser_session
    )
    code = artifact.data

    # A mismatched request is refused without spending the code
    with pytest.raises(InvalidGrant):
        await exchange_code(
            db_session, client_id="acme-client", client_secret="acme-client-secret",
            code=code, redirect_uri="https://app.example.com/other",
        )
    with pytest.raises(InvalidGrant, match="not issued to this client"):
        await exchange_code(
            db_session, client_id="other-client", client_secret="acme-client-secret",
            code=code, redirect_uri=REDIRECT_URI,
        )
    with pytest.raises(InvalidClient):
        await exchange_code(
            db_session, client_id="acme-client", client_secret="wrong",
            code=code, redirect_uri=REDIRECT_URI,
        )

    token = await exchange_code(
        db_session, client_id="acme-client", client_secret="acme-client-secret",
        code=code, redirect_uri=REDIRECT_URI,
    )
    claims = decode_token(token.access_token, audience="acme-client")
    assert claims["sub"] == seed.alice.id
    assert claims["nonce"] == "n-1"
    assert token.id_token is not None

    with pytest.raises(InvalidGrant, match="used"):
        await exchange_code(
            db_session, client_id="acme-client", client_secret="acme-client-secret",
            code=code, redirect_uri=REDIRECT_URI,
        )


@pytest.mark.asyncio
async def test_pkce_exchange(db_session, seed, browser_session):
    params = _code_params(code_challenge_method="S256", code_challenge=pkce_challenge("verifier-123"))
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "code", params, browser_session
    )
    with pytest.raises(InvalidGrant, match="PKCE"):
        await exchange_code(
            db_session, client_id="acme-client", client_secret="",
            code=artifact.data, redirect_uri=REDIRECT_URI, code_verifier="wrong",
        )
    token = await exchange_code(
        db_session, client_id="acme-client", client_secret="",
        code=artifact.data, redirect_uri=REDIRECT_URI, code_verifier="verifier-123",
    )
    assert token.id_token is None


@pytest.mark.asyncio
async def test_implicit_token(db_session, seed, browser_session):
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "id_token", ProtocolParams(nonce="n-2"), browser_session
    )
    claims = decode_token(artifact.data, audience="acme-client")
    assert claims["token_type"] == "id"
    assert claims["nonce"] == "n-2"
    assert claims["email"] == "alice@example.com"
    assert artifact.data2["tokenType"] == "Bearer"
    assert artifact.data2["expiresIn"] > 0


@pytest.mark.asyncio
async def test_token_grant_must_be_enabled(db_session, seed, browser_session):
    seed.application.grant_types = ["authorization_code"]
    with pytest.raises(GrantTypeNotAllowed):
        await ResponseDispatcher(db_session).dispatch(
            seed.application, seed.alice, "token", ProtocolParams(), browser_session
        )


@pytest.mark.asyncio
async def test_signin_session_flag_applies_to_protocol_responses(db_session, seed, browser_session):
    seed.application.enable_signin_session = True
    await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "token", ProtocolParams(), browser_session
    )
    assert browser_session.user_id == seed.alice.id


def test_parse_saml_request():
    request = parse_saml_request(_saml_request())
    assert request == {"id": "_req-1", "acs_url": REDIRECT_URI, "issuer": SP_ISSUER}


def test_parse_saml_request_rejects_garbage():
    with pytest.raises(InvalidSamlRequest):
        parse_saml_request(base64.b64encode(b"<not-saml/>").decode())
    with pytest.raises(InvalidSamlRequest):
        parse_saml_request(base64.b64encode(b"<<<").decode())


@pytest.mark.asyncio
async def test_saml_response_round_trip(db_session, seed, browser_session):
    params = ProtocolParams(saml_request=_saml_request(), relay_state="rs-1")
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "saml", params, browser_session
    )
    assert artifact.data2 == {"redirectUrl": REDIRECT_URI, "method": "POST", "relayState": "rs-1"}

    # The service provider validates it against the application's certificate
    sp_view = Provider(
        name="portcullis",
        category="SAML",
        type="SAML",
        certificate=seed.application.saml_certificate,
        audience=SP_ISSUER,
        attribute_mapping={},
    )
    async with httpx.AsyncClient() as http:
        info = await SamlIdProvider(sp_view, redirect_uri="", http_client=http).parse_assertion(artifact.data)
    assert info.id == "alice"
    assert info.email == "alice@example.com"


@pytest.mark.asyncio
async def test_saml_response_signature_covers_attributes(db_session, seed, browser_session):
    params = ProtocolParams(saml_request=_saml_request())
    artifact = await ResponseDispatcher(db_session).dispatch(
        seed.application, seed.alice, "saml", params, browser_session
    )
    response = etree.fromstring(base64.b64decode(artifact.data))
    assertion = response.find("saml2:Assertion", SAML_NS)
    assert assertion.find("ds:Signature", SAML_NS) is not None
    assert assertion.find("saml2:Conditions", SAML_NS).get("NotOnOrAfter")

    email = assertion.find(".//saml2:Attribute[@Name='email']/saml2:AttributeValue", SAML_NS)
    email.text = "mallory@example.com"
    with pytest.raises(IdentityProviderError, match="signature"):
        verify_assertion(etree.tostring(response), seed.application.saml_certificate)


@pytest.mark.asyncio
async def test_saml_response_needs_signing_certificate(db_session, seed, browser_session):
    seed.application.saml_certificate = None
    seed.application.saml_private_key = None
    params = ProtocolParams(saml_request=_saml_request())
    with pytest.raises(InvalidSamlRequest, match="certificate"):
        await ResponseDispatcher(db_session).dispatch(
            seed.application, seed.alice, "saml", params, browser_session
        )


@pytest.mark.asyncio
async def test_saml_response_rejects_unlisted_acs(db_session, seed, browser_session):
    params = ProtocolParams(saml_request=_saml_request("https://evil.example.com/acs"))
    with pytest.raises(InvalidSamlRequest):
        await ResponseDispatcher(db_session).dispatch(
            seed.application, seed.alice, "saml", params, browser_session
        )


@pytest.mark.asyncio
async def test_cas_ticket(db_session, seed, browser_session):
    dispatcher = ResponseDispatcher(db_session)
    with pytest.raises(InvalidRequest):
        await dispatcher.dispatch(seed.application, seed.alice, "cas", ProtocolParams(), browser_session)

    service = "https://cas-client.example.com/"
    artifact = await dispatcher.dispatch(
        seed.application, seed.alice, "cas", ProtocolParams(service=service), browser_session
    )
    assert artifact.data.startswith("ST-")

    with pytest.raises(InvalidGrant):
        await validate_service_ticket(db_session, artifact.data, "https://other.example.com/")
    user = await validate_service_ticket(db_session, artifact.data, service)
    assert user.id == seed.alice.id
    with pytest.raises(InvalidGrant):
        await validate_service_ticket(db_session, artifact.data, service)

    xml = cas_response_xml(user=user)
    assert "authenticationSuccess" in xml
    assert ">alice<" in xml
    assert "INVALID_TICKET" in cas_response_xml(error=InvalidGrant("nope"))
