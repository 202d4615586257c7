"""UserIdentity — link between an external identity and a local user."""

from __future__ import annotations

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserIdentity(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "user_identities"
    __table_args__ = (
        UniqueConstraint("provider_type", "external_id", name="uq_identity_provider_subject"),
    )

    user_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Concrete provider flavour ("GitHub", "Google", "Custom", ...)
    provider_type: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<UserIdentity {self.provider_type}:{self.external_id} -> {self.user_id}>"
