"""MfaFactor — an enrolled second factor."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

MFA_TYPE_APP = "app"
MFA_TYPE_SMS = "sms"
MFA_TYPE_EMAIL = "email"


class MfaFactor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mfa_factors"

    user_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # "app" (TOTP) | "sms" | "email"
    mfa_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # TOTP seed, Fernet-encrypted
    secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Phone / email the code is sent to for sms and email factors
    destination: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<MfaFactor {self.mfa_type} user={self.user_id!r}>"
