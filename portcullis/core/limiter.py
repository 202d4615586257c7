"""Shared rate limiter for the sign-in endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from portcullis.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
