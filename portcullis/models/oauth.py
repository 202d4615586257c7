"""One-time protocol artifacts: authorization codes, tokens, CAS tickets."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AuthorizationCode(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "authorization_codes"

    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    application: Mapped[str] = mapped_column(String(100), nullable=False)
    client_id: Mapped[str] = mapped_column(String(100), nullable=False)
    redirect_uri: Mapped[str] = mapped_column(String(500), nullable=False)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    nonce: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    code_challenge: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Set on redemption; a redeemed code can never be exchanged again
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Token(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "tokens"

    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    application: Mapped[str] = mapped_column(String(100), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    id_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    token_type: Mapped[str] = mapped_column(String(20), nullable=False, default="Bearer")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    code: Mapped[str | None] = mapped_column(String(100), nullable=True)


class ServiceTicket(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "service_tickets"

    ticket: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    service: Mapped[str] = mapped_column(String(500), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
