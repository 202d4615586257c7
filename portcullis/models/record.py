"""Record — write-only audit entry."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Record(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "records"

    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user: Mapped[str] = mapped_column(String(100), nullable=False)
    # "login" | "signup"
    action: Mapped[str] = mapped_column(String(50), nullable=False, default="login")
    application: Mapped[str | None] = mapped_column(String(100), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Record {self.action} {self.organization}/{self.user}>"
