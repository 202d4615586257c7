"""Credential helpers: password hashing and JWT issuance.

Tokens issued by the dispatcher:
    access   — bearer token for the client application (aud = client id)
    refresh  — long-lived token, same claims plus ``token_type=refresh``
    id       — OIDC id token, carries ``nonce`` and profile claims
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from portcullis.core.config import get_settings


# ── Password helpers ─────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


# ── JWT helpers ───────────────────────────────────────────────────────────────

def _encode(claims: dict[str, Any], minutes: int) -> tuple[str, datetime]:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=minutes)
    payload = {
        **claims,
        "iat": now,
        "exp": expire,
        "iss": settings.origin,
        "jti": secrets.token_hex(8),
    }
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return token, expire


def create_access_token(
    user_id: str, client_id: str, scope: str = "", nonce: str = ""
) -> tuple[str, datetime]:
    settings = get_settings()
    claims = {
        "sub": user_id,
        "aud": client_id,
        "scope": scope,
        "nonce": nonce,
        "token_type": "access",
    }
    return _encode(claims, settings.access_token_expire_minutes)


def create_refresh_token(user_id: str, client_id: str, scope: str = "") -> tuple[str, datetime]:
    settings = get_settings()
    claims = {"sub": user_id, "aud": client_id, "scope": scope, "token_type": "refresh"}
    return _encode(claims, settings.refresh_token_expire_minutes)


def create_id_token(
    user_id: str, client_id: str, *, nonce: str = "", profile: dict[str, Any] | None = None
) -> str:
    settings = get_settings()
    claims = {"sub": user_id, "aud": client_id, "nonce": nonce, "token_type": "id"}
    claims.update({k: v for k, v in (profile or {}).items() if v})
    token, _ = _encode(claims, settings.access_token_expire_minutes)
    return token


def decode_token(token: str, audience: str) -> dict:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        audience=audience,
        issuer=settings.origin,
        options={"require": ["sub", "exp", "iss", "aud"]},
    )
