"""Provider — federated identity source or captcha backend configuration."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

CATEGORY_OAUTH = "OAuth"
CATEGORY_SAML = "SAML"
CATEGORY_WEB3 = "Web3"
CATEGORY_CAPTCHA = "Captcha"

FEDERATED_CATEGORIES = frozenset({CATEGORY_OAUTH, CATEGORY_SAML, CATEGORY_WEB3})


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "providers"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "OAuth" | "SAML" | "Web3" | "Captcha"
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    # Concrete flavour: "GitHub", "Google", "Custom", "reCAPTCHA", ...
    type: Mapped[str] = mapped_column(String(50), nullable=False)

    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Fernet-encrypted (see portcullis.core.crypto)
    client_secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    # OAuth endpoints for "Custom" providers; SAML single sign-on URL in endpoint
    authorization_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    token_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    userinfo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    endpoint: Mapped[str | None] = mapped_column(String(500), nullable=True)
    scopes: Mapped[str] = mapped_column(String(255), nullable=False, default="openid email profile")

    # SAML: IdP X.509 signing certificate (PEM), expected audience, attribute name mapping
    certificate: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attribute_mapping: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Provider {self.name!r} {self.category}/{self.type}>"
