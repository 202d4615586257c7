"""Initial schema: tenants, users, identities, providers, sessions, protocol artifacts.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False)


def upgrade() -> None:
    # ── organizations ────────────────────────────────────────────────────────
    op.create_table(
        "organizations",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("init_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_signin_limit", sa.Integer(), nullable=True),
        sa.Column("failed_signin_frozen_minutes", sa.Integer(), nullable=True),
        sa.Column("mfa_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])

    # ── users ────────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(100), primary_key=True, nullable=False),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("country_code", sa.String(10), nullable=True),
        sa.Column("avatar", sa.String(500), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="normal-user"),
        sa.Column("tag", sa.String(100), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_forbidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("groups", sa.JSON(), nullable=False),
        sa.Column("properties", sa.JSON(), nullable=False),
        sa.Column("signup_application", sa.String(100), nullable=True),
        sa.Column("failed_signin_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_failed_signin_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recovery_codes", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("organization", "name", name="uq_users_org_name"),
    )
    op.create_index("ix_users_organization", "users", ["organization"])
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_phone", "users", ["phone"])

    # ── user_identities ──────────────────────────────────────────────────────
    op.create_table(
        "user_identities",
        _uuid_pk(),
        sa.Column(
            "user_id",
            sa.String(100),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_type", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "provider_type", "external_id", name="uq_identity_provider_subject"
        ),
    )
    op.create_index("ix_user_identities_user_id", "user_identities", ["user_id"])

    # ── mfa_factors ──────────────────────────────────────────────────────────
    op.create_table(
        "mfa_factors",
        _uuid_pk(),
        sa.Column(
            "user_id",
            sa.String(100),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("mfa_type", sa.String(20), nullable=False),
        sa.Column("secret", sa.Text(), nullable=True),
        sa.Column("destination", sa.String(255), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_preferred", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_mfa_factors_user_id", "mfa_factors", ["user_id"])

    # ── applications / application_providers ─────────────────────────────────
    op.create_table(
        "applications",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("client_id", sa.String(100), nullable=False, unique=True),
        sa.Column("client_secret", sa.Text(), nullable=False),
        sa.Column("saml_certificate", sa.Text(), nullable=True),
        sa.Column("saml_private_key", sa.Text(), nullable=True),
        sa.Column("enable_password", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_code_signin", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_signup", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_link_with_email", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_signin_session", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("mfa_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("grant_types", sa.JSON(), nullable=False),
        sa.Column("redirect_uris", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_applications_name", "applications", ["name"])
    op.create_index("ix_applications_organization", "applications", ["organization"])
    op.create_index("ix_applications_client_id", "applications", ["client_id"])

    op.create_table(
        "application_providers",
        _uuid_pk(),
        sa.Column(
            "application_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_name", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("can_signin", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("can_signup", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("can_unlink", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("rule", sa.String(20), nullable=True),
        sa.Column("signup_group", sa.String(100), nullable=True),
    )
    op.create_index(
        "ix_application_providers_application_id", "application_providers", ["application_id"]
    )

    # ── providers ────────────────────────────────────────────────────────────
    op.create_table(
        "providers",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("client_id", sa.String(255), nullable=True),
        sa.Column("client_secret", sa.Text(), nullable=True),
        sa.Column("authorization_url", sa.String(500), nullable=True),
        sa.Column("token_url", sa.String(500), nullable=True),
        sa.Column("userinfo_url", sa.String(500), nullable=True),
        sa.Column("endpoint", sa.String(500), nullable=True),
        sa.Column("scopes", sa.String(255), nullable=False, server_default="openid email profile"),
        sa.Column("certificate", sa.Text(), nullable=True),
        sa.Column("audience", sa.String(255), nullable=True),
        sa.Column("attribute_mapping", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_providers_name", "providers", ["name"])

    # ── browser_sessions / login_sessions / records ───────────────────────────
    op.create_table(
        "browser_sessions",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),
        sa.Column("mfa_pending_user_id", sa.String(100), nullable=True),
        sa.Column("mfa_pending_request", sa.JSON(), nullable=True),
        sa.Column("mfa_setup_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("remember", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "login_sessions",
        _uuid_pk(),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("user", sa.String(100), nullable=False),
        sa.Column("application", sa.String(100), nullable=False),
        sa.Column("session_id", sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_login_sessions_organization", "login_sessions", ["organization"])
    op.create_index("ix_login_sessions_user", "login_sessions", ["user"])

    op.create_table(
        "records",
        _uuid_pk(),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("user", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False, server_default="login"),
        sa.Column("application", sa.String(100), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_records_organization", "records", ["organization"])

    # ── authorization_codes / tokens / service_tickets ────────────────────────
    op.create_table(
        "authorization_codes",
        _uuid_pk(),
        sa.Column("code", sa.String(100), nullable=False, unique=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("application", sa.String(100), nullable=False),
        sa.Column("client_id", sa.String(100), nullable=False),
        sa.Column("redirect_uri", sa.String(500), nullable=False),
        sa.Column("scope", sa.String(255), nullable=False, server_default=""),
        sa.Column("nonce", sa.String(255), nullable=False, server_default=""),
        sa.Column("code_challenge", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_authorization_codes_code", "authorization_codes", ["code"])

    op.create_table(
        "tokens",
        _uuid_pk(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("application", sa.String(100), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("id_token", sa.Text(), nullable=True),
        sa.Column("scope", sa.String(255), nullable=False, server_default=""),
        sa.Column("token_type", sa.String(20), nullable=False, server_default="Bearer"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("code", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tokens_user_id", "tokens", ["user_id"])

    op.create_table(
        "service_tickets",
        _uuid_pk(),
        sa.Column("ticket", sa.String(100), nullable=False, unique=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("service", sa.String(500), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_service_tickets_ticket", "service_tickets", ["ticket"])

    # ── pricings / subscriptions ─────────────────────────────────────────────
    op.create_table(
        "pricings",
        _uuid_pk(),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("application", sa.String(100), nullable=False),
        sa.Column("plans", sa.JSON(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_pricings_organization", "pricings", ["organization"])
    op.create_index("ix_pricings_application", "pricings", ["application"])

    op.create_table(
        "subscriptions",
        _uuid_pk(),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("user", sa.String(100), nullable=False),
        sa.Column("pricing", sa.String(100), nullable=True),
        sa.Column("plan", sa.String(100), nullable=True),
        sa.Column("state", sa.String(20), nullable=False, server_default="Pending"),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_organization", "subscriptions", ["organization"])
    op.create_index("ix_subscriptions_user", "subscriptions", ["user"])

    # ── verification_codes ───────────────────────────────────────────────────
    op.create_table(
        "verification_codes",
        _uuid_pk(),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_verification_codes_destination", "verification_codes", ["destination"])


def downgrade() -> None:
    for table in (
        "verification_codes",
        "subscriptions",
        "pricings",
        "service_tickets",
        "tokens",
        "authorization_codes",
        "records",
        "login_sessions",
        "browser_sessions",
        "providers",
        "application_providers",
        "applications",
        "mfa_factors",
        "user_identities",
        "users",
        "organizations",
    ):
        op.drop_table(table)
