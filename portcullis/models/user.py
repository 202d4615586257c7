"""User model — local accounts, possibly linked to federated identities."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin

USER_TYPE_NORMAL = "normal-user"
USER_TYPE_PAID = "paid-user"


def generate_user_id() -> str:
    return uuid.uuid4().hex


class User(TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("organization", "name", name="uq_users_org_name"),)

    # Generated, or the provider-supplied subject on federated sign-up
    id: Mapped[str] = mapped_column(String(100), primary_key=True, default=generate_user_id)
    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    country_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # None for federated-only accounts
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "normal-user" | "paid-user"
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=USER_TYPE_NORMAL)
    tag: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_forbidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    groups: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    properties: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    signup_application: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Brute-force counter, only ever changed through atomic UPDATEs
    failed_signin_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failed_signin_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # SHA-256 digests of unused recovery codes
    recovery_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    @property
    def key(self) -> str:
        return f"{self.organization}/{self.name}"

    @property
    def is_paid(self) -> bool:
        return self.type == USER_TYPE_PAID

    def __repr__(self) -> str:
        return f"<User {self.key!r} type={self.type!r}>"
