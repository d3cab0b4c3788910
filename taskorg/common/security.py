"""Password hashing and token helpers."""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

PASSWORD_ALGO = "bcrypt"
LEGACY_SCRYPT_ALGO = "scrypt"

# bcrypt only looks at the first 72 bytes of a secret
_BCRYPT_MAX_BYTES = 72


def _secret(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> tuple[str, str, str]:
    """Return ``(hash, salt, algo)`` for storage on the user record."""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(_secret(password), salt)
    return hashed.decode("ascii"), salt.decode("ascii"), PASSWORD_ALGO


def verify_password(password: str, password_hash: str, password_salt: str, algo: str) -> bool:
    if not password_hash or not password_salt:
        return False
    if algo == LEGACY_SCRYPT_ALGO:
        # Accounts created by the earlier Node server: scrypt(N=16384, r=8, p=1), 64 byte key
        derived = hashlib.scrypt(
            password.encode("utf-8"),
            salt=password_salt.encode("utf-8"),
            n=16384,
            r=8,
            p=1,
            dklen=64,
        )
        try:
            stored = bytes.fromhex(password_hash)
        except ValueError:
            return False
        return hmac.compare_digest(stored, derived)
    try:
        return bcrypt.checkpw(_secret(password), password_hash.encode("ascii"))
    except ValueError:
        return False


def generate_session_id() -> str:
    return secrets.token_hex(24)


def generate_csrf_token() -> str:
    return secrets.token_hex(24)
