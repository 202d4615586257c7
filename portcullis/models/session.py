"""Session records.

BrowserSession — server-side state behind the transport cookie. It holds the
signed-in user and the pending-MFA marker, so that marker is isolated per
browser session and never shared between concurrent users.

LoginSession — append-only record of a completed sign-in for an application.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


class BrowserSession(TimestampMixin, Base):
    __tablename__ = "browser_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_session_id)

    # Signed-in user id, None when anonymous
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Set after primary-factor success, cleared on MFA completion or abort
    mfa_pending_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # The dispatch request to resume once MFA completes
    mfa_pending_request: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Signed in only to enroll a mandated factor; nothing is issued until MFA passes
    mfa_setup_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # False when the user did not ask to stay signed in
    remember: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def clear_mfa(self) -> None:
        self.mfa_pending_user_id = None
        self.mfa_pending_request = None
        self.mfa_setup_required = False

    def __repr__(self) -> str:
        return (
            f"<BrowserSession user={self.user_id!r} pending={self.mfa_pending_user_id!r} "
            f"setup={self.mfa_setup_required!r}>"
        )


class LoginSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "login_sessions"

    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    application: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<LoginSession {self.organization}/{self.user} app={self.application!r}>"
