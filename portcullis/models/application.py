"""Application — tenant configuration consulted on every sign-in."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# Captcha rules on provider items
CAPTCHA_RULE_ALWAYS = "Always"
CAPTCHA_RULE_DYNAMIC = "Dynamic"
CAPTCHA_RULE_NONE = "None"


class Application(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "applications"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    client_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    client_secret: Mapped[str] = mapped_column(Text, nullable=False)
    # SAML responses issued for this application: PEM certificate, Fernet-encrypted PEM key
    saml_certificate: Mapped[str | None] = mapped_column(Text, nullable=True)
    saml_private_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Login methods and policy flags
    enable_password: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_code_signin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_signup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_link_with_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_signin_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mfa_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # e.g. ["authorization_code", "token", "id_token", "refresh_token"]
    grant_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Regex patterns, each must match the whole redirect URI
    redirect_uris: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Empty list = any tag may sign in
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Application {self.name!r} org={self.organization!r}>"


class ApplicationProvider(UUIDPrimaryKeyMixin, Base):
    """Ordered binding of a Provider to an Application (a "provider item")."""

    __tablename__ = "application_providers"

    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    can_signin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_signup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_unlink: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Captcha items only: "Always" | "Dynamic" | "None"
    rule: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # Group assigned to accounts provisioned through this provider
    signup_group: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ApplicationProvider {self.provider_name!r} #{self.position}>"
