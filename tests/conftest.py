"""pytest fixtures shared across all tests."""

from __future__ import annotations

import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from lxml import etree
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from portcullis.core.auth import hash_password
from portcullis.core.crypto import encrypt, generate_signing_certificate
from portcullis.idp.saml import SAML_NS, sign_assertion
from portcullis.models import Base
from portcullis.models.application import CAPTCHA_RULE_DYNAMIC, Application, ApplicationProvider
from portcullis.models.organization import Organization
from portcullis.models.provider import CATEGORY_CAPTCHA, CATEGORY_OAUTH, CATEGORY_SAML, Provider
from portcullis.models.session import BrowserSession
from portcullis.models.user import User
from portcullis.signin.captcha import CaptchaVerifier
from portcullis.signin.engine import SigninEngine
from portcullis.signin.recorder import SessionRecorder

PASSWORD = "s3cret-pass"
REDIRECT_URI = "https://app.example.com/callback"
TOKEN_URL = "https://idp.example.com/token"
USERINFO_URL = "https://idp.example.com/userinfo"
SAML_AUDIENCE = "https://portcullis.example.com"


@dataclass(frozen=True)
class SigningKeys:
    """Self-signed material for the upstream SAML IdP and for the application's own responses."""

    idp_cert: str
    idp_key: str
    app_cert: str
    app_key: str


@dataclass
class Seed:
    organization: Organization
    application: Application
    alice: User
    oidc: Provider
    saml: Provider
    captcha: Provider


@dataclass
class FakeIdp:
    """Token and userinfo endpoints of an OIDC provider, served by httpx.MockTransport."""

    userinfo: dict[str, Any] = field(
        default_factory=lambda: {
            "sub": "ext-42",
            "preferred_username": "bob",
            "name": "Bob Builder",
            "email": "bob@example.com",
            "picture": "https://idp.example.com/bob.png",
        }
    )
    token_status: int = 200
    codes: list[str] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            form = dict(httpx.QueryParams(request.content.decode()))
            self.codes.append(form.get("code", ""))
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "server_error"})
            return httpx.Response(
                200, json={"access_token": "idp-access", "token_type": "Bearer", "expires_in": 3600}
            )
        if str(request.url) == USERINFO_URL:
            return httpx.Response(200, json=self.userinfo)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@dataclass
class FakeCaptcha:
    success: bool = True
    tokens: list[str] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        self.tokens.append(form.get("response", ""))
        return httpx.Response(200, json={"success": self.success})

    @property
    def verifier(self) -> CaptchaVerifier:
        return CaptchaVerifier(transport=httpx.MockTransport(self.handler))


def _stamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def saml_response(
    key_pem: str,
    cert_pem: str,
    subject: str,
    *,
    email: str = "",
    audience: str = SAML_AUDIENCE,
    valid_for: timedelta | None = timedelta(minutes=5),
    tamper: Callable[[etree._Element], None] | None = None,
) -> str:
    """Base64 SAML Response wrapping one signed assertion, as an IdP posts it.

    ``valid_for=None`` leaves out <Conditions>; ``tamper`` edits the assertion
    after it was signed.
    """
    saml2 = SAML_NS["saml2"]
    nsmap = {"saml2": saml2, "saml2p": SAML_NS["saml2p"]}
    now = datetime.now(timezone.utc)
    assertion = etree.Element(
        f"{{{saml2}}}Assertion", {"ID": "_assertion-1", "Version": "2.0", "IssueInstant": _stamp(now)}, nsmap=nsmap
    )
    name_id = etree.SubElement(etree.SubElement(assertion, f"{{{saml2}}}Subject"), f"{{{saml2}}}NameID")
    name_id.text = subject
    if valid_for is not None:
        conditions = etree.SubElement(
            assertion,
            f"{{{saml2}}}Conditions",
            {"NotBefore": _stamp(now - timedelta(minutes=1)), "NotOnOrAfter": _stamp(now + valid_for)},
        )
        if audience:
            restriction = etree.SubElement(conditions, f"{{{saml2}}}AudienceRestriction")
            etree.SubElement(restriction, f"{{{saml2}}}Audience").text = audience
    if email:
        statement = etree.SubElement(assertion, f"{{{saml2}}}AttributeStatement")
        attribute = etree.SubElement(statement, f"{{{saml2}}}Attribute", {"Name": "email"})
        etree.SubElement(attribute, f"{{{saml2}}}AttributeValue").text = email

    signed = sign_assertion(assertion, key_pem, cert_pem)
    if tamper is not None:
        tamper(signed)
    response = etree.Element(f"{{{SAML_NS['saml2p']}}}Response", nsmap=nsmap)
    response.append(signed)
    return base64.b64encode(etree.tostring(response)).decode()


def replace_email(value: str) -> Callable[[etree._Element], None]:
    def tamper(assertion: etree._Element) -> None:
        assertion.find(".//saml2:Attribute[@Name='email']/saml2:AttributeValue", SAML_NS).text = value

    return tamper


@pytest.fixture(scope="session")
def signing_keys() -> SigningKeys:
    idp_cert, idp_key = generate_signing_certificate("idp.example.com")
    app_cert, app_key = generate_signing_certificate("app-acme")
    return SigningKeys(idp_cert, idp_key, app_cert, app_key)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a fresh file-backed SQLite engine per test function.

    NullPool hands every session its own connection, so counter and recorder
    sessions commit independently of the request session as they do on PostgreSQL.
    """
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest_asyncio.fixture
async def db_session(session_factory, recorder):
    """Yield an async session bound to the test engine.

    Requesting the recorder first closes this session before the recorder
    flushes its queue, so pending writes never block the worker.
    """
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def recorder(session_factory):
    rec = SessionRecorder(session_factory, maxsize=100)
    yield rec
    await rec.stop()


@pytest.fixture
def fake_idp() -> FakeIdp:
    return FakeIdp()


@pytest.fixture
def fake_captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest_asyncio.fixture
async def seed(db_session, signing_keys) -> Seed:
    """One organization with an application, a password user and three providers."""
    org = Organization(name="acme", display_name="Acme", init_score=2000, failed_signin_limit=3)
    app = Application(
        name="app-acme",
        organization="acme",
        display_name="Acme Portal",
        client_id="acme-client",
        client_secret="acme-client-secret",
        saml_certificate=signing_keys.app_cert,
        saml_private_key=encrypt(signing_keys.app_key),
        grant_types=["authorization_code", "token", "id_token"],
        redirect_uris=[r"https://app\.example\.com/callback"],
        tags=[],
    )
    alice = User(
        organization="acme",
        name="alice",
        display_name="Alice",
        email="alice@example.com",
        phone="+16502530000",
        country_code="US",
        password_hash=hash_password(PASSWORD),
        groups=[],
        properties={"no": "1"},
        recovery_codes=[],
    )
    oidc = Provider(
        name="acme-oidc",
        display_name="Acme SSO",
        category=CATEGORY_OAUTH,
        type="Custom",
        client_id="portcullis",
        client_secret=encrypt("idp-secret"),
        token_url=TOKEN_URL,
        userinfo_url=USERINFO_URL,
        attribute_mapping={},
    )
    saml = Provider(
        name="acme-saml",
        category=CATEGORY_SAML,
        type="SAML",
        client_id="https://portcullis.example.com",
        endpoint="https://idp.example.com/sso",
        certificate=signing_keys.idp_cert,
        audience=SAML_AUDIENCE,
        attribute_mapping={},
    )
    captcha = Provider(
        name="acme-recaptcha",
        category=CATEGORY_CAPTCHA,
        type="reCAPTCHA",
        client_id="site-key",
        client_secret=encrypt("captcha-secret"),
        attribute_mapping={},
    )
    db_session.add_all([org, app, alice, oidc, saml, captcha])
    await db_session.flush()
    db_session.add_all(
        [
            ApplicationProvider(application_id=app.id, provider_name="acme-oidc", position=0),
            ApplicationProvider(
                application_id=app.id, provider_name="acme-saml", position=1, signup_group="saml-users"
            ),
            ApplicationProvider(
                application_id=app.id,
                provider_name="acme-recaptcha",
                position=2,
                rule=CAPTCHA_RULE_DYNAMIC,
            ),
        ]
    )
    await db_session.commit()
    return Seed(org, app, alice, oidc, saml, captcha)


@pytest_asyncio.fixture
async def browser_session(db_session) -> BrowserSession:
    session = BrowserSession()
    db_session.add(session)
    await db_session.commit()
    return session


@pytest.fixture
def signin_engine(db_session, recorder, session_factory, fake_idp, fake_captcha) -> SigninEngine:
    return SigninEngine(
        db_session,
        recorder=recorder,
        captcha_verifier=fake_captcha.verifier,
        session_factory=session_factory,
        idp_transport=fake_idp.transport,
    )


@pytest_asyncio.fixture
async def client(session_factory, recorder, fake_idp, fake_captcha):
    """HTTPX async test client wired to the FastAPI app with a test DB."""
    from portcullis.api.app import create_app
    from portcullis.api.dependencies import get_db
    from portcullis.core.limiter import limiter

    app = create_app()
    app.state.recorder = recorder
    app.state.session_factory = session_factory
    app.state.idp_transport = fake_idp.transport
    app.state.captcha_verifier = fake_captcha.verifier

    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_db
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    limiter.enabled = True
