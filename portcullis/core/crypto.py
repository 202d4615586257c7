"""Secret handling: Fernet encryption at rest, digests and signing certificates.

Provider client secrets and TOTP seeds are stored encrypted with a Fernet key
derived from ``settings.secret_key`` (SHA-256, base64-urlsafe). The derivation is
deterministic, so rows written by one process decrypt in another as long as
SECRET_KEY does not change.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography import x509
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from portcullis.core.config import get_settings
from portcullis.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=4)
def _fernet_for(secret_key: str) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(secret_key.encode()).digest())
    return Fernet(key)


def _get_fernet() -> Fernet:
    return _fernet_for(get_settings().secret_key)


def encrypt(value: str) -> str:
    """Encrypt *value* and return the ciphertext as a UTF-8 string."""
    return _get_fernet().encrypt(value.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt *ciphertext*. Raises ``InvalidToken`` after a SECRET_KEY change."""
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("Stored secret cannot be decrypted with the current SECRET_KEY")
        raise


def digest(value: str) -> str:
    """Hex SHA-256 of *value*, for single-use secrets compared by lookup."""
    return hashlib.sha256(value.encode()).hexdigest()


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def s256(value: str) -> str:
    """PKCE S256 transform: unpadded base64url SHA-256."""
    return _b64url(hashlib.sha256(value.encode()).digest())


def same(left: str, right: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(left.encode(), right.encode())


def generate_signing_certificate(common_name: str, days: int = 3650) -> tuple[str, str]:
    """Self-signed RSA certificate for XML signatures. Returns ``(cert_pem, key_pem)``."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .sign(private_key=key, algorithm=hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return cert_pem, key_pem
