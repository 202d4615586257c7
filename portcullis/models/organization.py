"""Organization — tenant owning users and applications."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Organization(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Score given to accounts provisioned on first federated sign-up
    init_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # None = fall back to settings.failed_signin_limit / failed_signin_frozen_minutes
    failed_signin_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failed_signin_frozen_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    mfa_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Organization {self.name!r}>"
