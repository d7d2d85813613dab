"""Security utilities: credential generation and encryption, admin token checks."""

import hmac
import secrets

from cryptography.fernet import Fernet

from tenantkit.core.config import get_settings

settings = get_settings()


def generate_db_password() -> str:
    """128-bit random hex password; alphanumeric so it is safe inside DDL literals."""
    return secrets.token_hex(16)


def verify_admin_token(presented: str, expected: str) -> bool:
    """Constant-time comparison; an unset expected token never matches."""
    if not expected:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


# ── Field-level encryption (Fernet) ──────────────────────────

def _get_fernet() -> Fernet:
    if not settings.encryption_key:
        raise RuntimeError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a Fernet-encrypted value."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()
