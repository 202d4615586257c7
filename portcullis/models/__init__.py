"""SQLAlchemy ORM models."""

from portcullis.models.application import Application, ApplicationProvider
from portcullis.models.base import Base
from portcullis.models.identity import UserIdentity
from portcullis.models.mfa import MfaFactor
from portcullis.models.oauth import AuthorizationCode, ServiceTicket, Token
from portcullis.models.organization import Organization
from portcullis.models.provider import Provider
from portcullis.models.record import Record
from portcullis.models.session import BrowserSession, LoginSession
from portcullis.models.subscription import Pricing, Subscription
from portcullis.models.user import User
from portcullis.models.verification import VerificationCode

__all__ = [
    "Base", "Application", "ApplicationProvider", "AuthorizationCode", "BrowserSession",
    "LoginSession", "MfaFactor", "Organization", "Pricing", "Provider", "Record",
    "ServiceTicket", "Subscription", "Token", "User", "UserIdentity", "VerificationCode",
]
