"""Protocol artifacts: OAuth codes and tokens, SAML responses, CAS tickets."""

from __future__ import annotations

import base64
import binascii
import re
import secrets
import zlib
from datetime import datetime, timedelta
from typing import Any

from lxml import etree
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.auth import create_access_token, create_id_token, create_refresh_token
from portcullis.core.config import get_settings
from portcullis.core.crypto import decrypt, s256, same
from portcullis.core.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidSamlRequest,
    SigninError,
)
from portcullis.core.logging import get_logger
from portcullis.idp.saml import SAML_NS, XML_PARSER, sign_assertion
from portcullis.models.application import Application
from portcullis.models.base import as_utc, utcnow
from portcullis.models.oauth import AuthorizationCode, ServiceTicket, Token
from portcullis.models.user import User
from portcullis.schemas.auth import ProtocolParams
from portcullis.signin.store import get_application

logger = get_logger(__name__)

CAS_NS = "http://www.yale.edu/tp/cas"
PKCE_METHODS = ("", "null", "S256")


def redirect_uri_allowed(application: Application, redirect_uri: str) -> bool:
    """Each configured pattern is a regex that must match the whole URI."""
    if not redirect_uri:
        return False
    for pattern in application.redirect_uris or []:
        try:
            if re.fullmatch(pattern, redirect_uri):
                return True
        except re.error:
            if pattern == redirect_uri:
                return True
    return False


def pkce_challenge(verifier: str) -> str:
    return s256(verifier)


def _instant(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


# ── OAuth 2.0 / OIDC ─────────────────────────────────────────────────────────

async def issue_code(
    db: AsyncSession, application: Application, user: User, params: ProtocolParams
) -> AuthorizationCode:
    if params.client_id != application.client_id:
        raise InvalidClient("Invalid client_id")
    if not redirect_uri_allowed(application, params.redirect_uri):
        raise InvalidClient(
            f"Redirect URI: {params.redirect_uri} doesn't exist in the allowed Redirect URI list"
        )
    if params.code_challenge_method not in PKCE_METHODS:
        raise InvalidRequest("Challenge method should be S256")

    code = AuthorizationCode(
        code=secrets.token_urlsafe(24),
        user_id=user.id,
        application=application.name,
        client_id=application.client_id,
        redirect_uri=params.redirect_uri,
        scope=params.scope,
        nonce=params.nonce,
        code_challenge=params.code_challenge or None,
        expires_at=utcnow() + timedelta(seconds=get_settings().code_expire_seconds),
    )
    db.add(code)
    await db.flush()
    return code


async def issue_token(
    db: AsyncSession,
    application: Application,
    user: User,
    *,
    scope: str = "",
    nonce: str = "",
    with_id_token: bool = False,
    code: str | None = None,
) -> Token:
    access_token, expires_at = create_access_token(user.id, application.client_id, scope, nonce)
    refresh_token, _ = create_refresh_token(user.id, application.client_id, scope)
    id_token = None
    if with_id_token or "openid" in scope.split():
        id_token = create_id_token(
            user.id,
            application.client_id,
            nonce=nonce,
            profile={
                "name": user.name,
                "preferred_username": user.display_name,
                "email": user.email,
                "phone_number": user.phone,
                "picture": user.avatar,
            },
        )
    token = Token(
        user_id=user.id,
        application=application.name,
        access_token=access_token,
        refresh_token=refresh_token,
        id_token=id_token,
        scope=scope,
        expires_at=expires_at,
        code=code,
    )
    db.add(token)
    await db.flush()
    return token


async def exchange_code(
    db: AsyncSession,
    *,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str = "",
) -> Token:
    """Redeem an authorization code. A code is spent only by a fully valid request."""
    result = await db.execute(select(AuthorizationCode).where(AuthorizationCode.code == code))
    row = result.scalar_one_or_none()
    if row is None:
        raise InvalidGrant("Authorization code is invalid")
    if row.client_id != client_id or row.redirect_uri != redirect_uri:
        raise InvalidGrant("Authorization code was not issued to this client and redirect URI")
    if row.used_at is not None:
        raise InvalidGrant("Authorization code has been used")
    if as_utc(row.expires_at) <= utcnow():
        raise InvalidGrant("Authorization code has expired")

    application = await get_application(db, name=row.application)
    if row.code_challenge:
        if not code_verifier or not same(pkce_challenge(code_verifier), row.code_challenge):
            raise InvalidGrant("PKCE verification failed")
    elif not client_secret or not same(client_secret, application.client_secret):
        raise InvalidClient("Invalid client_secret")

    consumed = await db.execute(
        update(AuthorizationCode)
        .where(AuthorizationCode.id == row.id, AuthorizationCode.used_at.is_(None))
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        raise InvalidGrant("Authorization code has been used")

    user = await db.get(User, row.user_id)
    if user is None or user.is_deleted:
        raise InvalidGrant("The user of the authorization code no longer exists")
    token = await issue_token(
        db, application, user, scope=row.scope, nonce=row.nonce, code=row.code
    )
    logger.info("Authorization code exchanged", application=application.name, user=user.key)
    return token


# ── SAML 2.0 (this server as IdP) ────────────────────────────────────────────

def parse_saml_request(raw: str) -> dict[str, str]:
    """Decode a base64 (optionally raw-deflated) AuthnRequest."""
    try:
        data = base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSamlRequest("SAMLRequest is not valid base64") from exc
    try:
        xml = zlib.decompress(data, -15)
    except zlib.error:
        xml = data
    try:
        root = etree.fromstring(xml, parser=XML_PARSER)
    except etree.XMLSyntaxError as exc:
        raise InvalidSamlRequest("SAMLRequest is not valid XML") from exc
    if root.tag != f"{{{SAML_NS['saml2p']}}}AuthnRequest":
        raise InvalidSamlRequest("SAMLRequest is not an AuthnRequest")
    return {
        "id": root.get("ID", ""),
        "acs_url": root.get("AssertionConsumerServiceURL", ""),
        "issuer": (root.findtext("saml2:Issuer", default="", namespaces=SAML_NS) or "").strip(),
    }


def _saml(tag: str, parent: etree._Element | None = None, **attrs: str) -> etree._Element:
    prefix, _, name = tag.partition(":")
    qname = f"{{{SAML_NS[prefix]}}}{name}"
    if parent is None:
        return etree.Element(qname, attrs, nsmap={p: SAML_NS[p] for p in ("saml2", "saml2p")})
    return etree.SubElement(parent, qname, attrs)


def build_saml_response(
    application: Application, user: User, params: ProtocolParams
) -> tuple[str, dict[str, Any]]:
    if not application.saml_certificate or not application.saml_private_key:
        raise InvalidSamlRequest(f"Application {application.name} has no SAML signing certificate")
    request = parse_saml_request(params.saml_request)
    acs_url = request["acs_url"]
    if not redirect_uri_allowed(application, acs_url):
        raise InvalidSamlRequest(f"Assertion consumer URL: {acs_url} is not allowed")

    settings = get_settings()
    now = utcnow()
    response = _saml(
        "saml2p:Response",
        ID=f"_{secrets.token_hex(16)}",
        InResponseTo=request["id"],
        Version="2.0",
        IssueInstant=_instant(now),
        Destination=acs_url,
    )
    _saml("saml2:Issuer", response).text = settings.origin
    status = _saml("saml2p:Status", response)
    _saml("saml2p:StatusCode", status, Value="urn:oasis:names:tc:SAML:2.0:status:Success")

    assertion = _saml(
        "saml2:Assertion",
        ID=f"_{secrets.token_hex(16)}",
        Version="2.0",
        IssueInstant=_instant(now),
    )
    _saml("saml2:Issuer", assertion).text = settings.origin
    subject = _saml("saml2:Subject", assertion)
    _saml("saml2:NameID", subject).text = user.name
    conditions = _saml(
        "saml2:Conditions",
        assertion,
        NotBefore=_instant(now - timedelta(minutes=1)),
        NotOnOrAfter=_instant(now + timedelta(minutes=5)),
    )
    restriction = _saml("saml2:AudienceRestriction", conditions)
    _saml("saml2:Audience", restriction).text = request["issuer"] or application.client_id

    statement = _saml("saml2:AttributeStatement", assertion)
    for name, value in (
        ("username", user.name),
        ("email", user.email),
        ("phone", user.phone),
        ("displayName", user.display_name),
    ):
        if value:
            attribute = _saml("saml2:Attribute", statement, Name=name)
            _saml("saml2:AttributeValue", attribute).text = value

    response.append(
        sign_assertion(
            assertion, decrypt(application.saml_private_key), application.saml_certificate
        )
    )

    payload = base64.b64encode(etree.tostring(response)).decode()
    redirect = {"redirectUrl": acs_url, "method": "POST", "relayState": params.relay_state}
    return payload, redirect


# ── CAS ──────────────────────────────────────────────────────────────────────

async def issue_service_ticket(db: AsyncSession, user: User, service: str) -> ServiceTicket:
    ticket = ServiceTicket(
        ticket=f"ST-{secrets.token_hex(16)}",
        user_id=user.id,
        service=service,
        expires_at=utcnow() + timedelta(seconds=get_settings().service_ticket_expire_seconds),
    )
    db.add(ticket)
    await db.flush()
    return ticket


async def validate_service_ticket(db: AsyncSession, ticket: str, service: str) -> User:
    result = await db.execute(select(ServiceTicket).where(ServiceTicket.ticket == ticket))
    row = result.scalar_one_or_none()
    if row is None or row.service != service:
        raise InvalidGrant(f"Ticket {ticket} not recognized")
    if row.used_at is not None or as_utc(row.expires_at) <= utcnow():
        raise InvalidGrant(f"Ticket {ticket} is expired or already used")

    consumed = await db.execute(
        update(ServiceTicket)
        .where(ServiceTicket.id == row.id, ServiceTicket.used_at.is_(None))
        .values(used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        raise InvalidGrant(f"Ticket {ticket} is expired or already used")

    user = await db.get(User, row.user_id)
    if user is None or user.is_deleted:
        raise InvalidGrant(f"Ticket {ticket} not recognized")
    return user


def cas_response_xml(user: User | None = None, error: SigninError | None = None) -> str:
    root = etree.Element(f"{{{CAS_NS}}}serviceResponse", nsmap={"cas": CAS_NS})
    if user is not None:
        success = etree.SubElement(root, f"{{{CAS_NS}}}authenticationSuccess")
        etree.SubElement(success, f"{{{CAS_NS}}}user").text = user.name
        attributes = etree.SubElement(success, f"{{{CAS_NS}}}attributes")
        for name, value in (
            ("email", user.email),
            ("displayName", user.display_name),
            ("organization", user.organization),
        ):
            if value:
                etree.SubElement(attributes, f"{{{CAS_NS}}}{name}").text = value
    else:
        failure = etree.SubElement(
            root, f"{{{CAS_NS}}}authenticationFailure", {"code": "INVALID_TICKET"}
        )
        failure.text = error.message if error is not None else "Ticket not recognized"
    return etree.tostring(root, encoding="unicode")
