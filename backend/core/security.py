"""
FulfilOps Security Utilities

Encryption for stored courier credentials, JWT handling, HMAC signatures
for inbound webhooks and gateway checksums.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta

from cryptography.fernet import Fernet
from jose import JWTError, jwt

from core.config import DEFAULT_ENCRYPTION_KEY, get_settings

settings = get_settings()

# Fernet encryption for courier client secrets
# IMPORTANT: Dev key must be deterministic so all processes share the same key.
if settings.encryption_key == DEFAULT_ENCRYPTION_KEY:
    _dev_key = base64.urlsafe_b64encode(hashlib.sha256(b"fulfilops-dev-key-not-for-production").digest())
    _fernet = Fernet(_dev_key)
else:
    _fernet = Fernet(settings.encryption_key.encode())


def encrypt(plaintext: str) -> str:
    """Encrypt sensitive data (courier client secrets, etc)."""
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> str:
    """Decrypt sensitive data."""
    return _fernet.decrypt(ciphertext.encode()).decode()


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token (dev tooling and tests)."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a bearer token. Returns None when invalid or expired."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None


# ─── HMAC helpers ──────────────────────────────────────────────────────────


def hmac_sha256_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def hmac_sha256_base64(secret: str, payload: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_base64_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a base64 HMAC-SHA256 signature over a raw body."""
    if not signature or not secret:
        return False
    expected = hmac_sha256_base64(secret, payload)
    return hmac.compare_digest(signature.strip(), expected)
