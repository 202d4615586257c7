"""Pricing and Subscription — paid-tier gating."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

SUB_STATE_ACTIVE = "Active"
SUB_STATE_PENDING = "Pending"
SUB_STATE_EXPIRED = "Expired"
SUB_STATE_ERROR = "Error"
SUB_STATE_SUSPENDED = "Suspended"


class Pricing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "pricings"

    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    application: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    plans: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_public(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "application": self.application,
            "plans": list(self.plans or []),
        }


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "subscriptions"

    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    pricing: Mapped[str | None] = mapped_column(String(100), nullable=True)
    plan: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # "Active" | "Pending" | "Expired" | "Error" | "Suspended"
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=SUB_STATE_PENDING)

    def to_public(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user": self.user,
            "pricing": self.pricing,
            "plan": self.plan,
            "state": self.state,
        }
