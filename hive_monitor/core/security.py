"""
Hive Monitor - Security helpers

- Device credentials (opaque API keys)
- Operator password hashing (salted PBKDF2)
- Signed, expiring operator tokens
"""

import base64
import hashlib
import hmac
import json
import re
import secrets
import time

from hive_monitor.core.config import settings
from hive_monitor.core.errors import Unauthorized

PBKDF2_ITERATIONS = 200_000
CREDENTIAL_RANDOM_BYTES = 16  # 128 bits


def generate_credential(name: str) -> str:
    """Generate device credential, e.g. "alpha_3f9c...".

    The name prefix only helps operators tell keys apart; all entropy
    comes from the random suffix.
    """
    prefix = re.sub(r"[^a-z0-9]+", "", name.lower())[:16] or "device"
    return f"{prefix}_{secrets.token_hex(CREDENTIAL_RANDOM_BYTES)}"


# ==================== PASSWORDS ====================

def hash_password(password: str) -> str:
    """Hash password as ``pbkdf2_sha256$<iterations>$<salt>$<hash>``."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    """Check password against a stored hash."""
    try:
        algorithm, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False

    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# ==================== TOKENS ====================

def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(payload: str) -> str:
    mac = hmac.new(settings.secret_key.encode(), payload.encode(), hashlib.sha256)
    return _b64encode(mac.digest())


def create_token(operator_id: int, username: str, ttl_hours: int | None = None) -> str:
    """Create signed operator token ``<payload>.<signature>``."""
    ttl = ttl_hours if ttl_hours is not None else settings.token_ttl_hours
    claims = {
        "sub": operator_id,
        "username": username,
        "exp": int(time.time()) + ttl * 3600,
    }
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode())
    return f"{payload}.{_sign(payload)}"


def decode_token(token: str) -> dict:
    """Verify token signature and expiry, return its claims."""
    try:
        payload, signature = token.split(".")
    except ValueError:
        raise Unauthorized("Invalid token")

    # Bytes: headers arrive latin-1 decoded and may carry non-ASCII
    if not hmac.compare_digest(signature.encode(), _sign(payload).encode()):
        raise Unauthorized("Invalid token")

    try:
        claims = json.loads(_b64decode(payload))
    except ValueError:
        raise Unauthorized("Invalid token")

    if claims.get("exp", 0) < time.time():
        raise Unauthorized("Token expired")

    return claims
