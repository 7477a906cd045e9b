"""
Password hashing and credential encryption.

Passwords: bcrypt, 12 rounds, stored in users.password_hash.

Integration credentials: Fernet via ``MultiFernet``. ENCRYPTION_KEY holds one
key or a comma-separated list; the first key encrypts, every key decrypts,
so a new key can be put in front and old ciphertext still reads until
``rotate_secret`` has rewritten it.

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import os

import bcrypt
from cryptography.fernet import Fernet, MultiFernet
from flask import current_app, has_app_context

BCRYPT_ROUNDS = 12


def hash_password(plain_password: str) -> str:
    return bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """True if ``plain_password`` matches the stored bcrypt hash."""
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB counts as a failed login.
        return False


def _configured_keys() -> str:
    raw = current_app.config.get("ENCRYPTION_KEY") if has_app_context() else None
    return raw or os.getenv("ENCRYPTION_KEY", "")


def _fernet(raw_keys: str | None = None) -> MultiFernet:
    keys = [k.strip() for k in (raw_keys or _configured_keys()).split(",") if k.strip()]
    if not keys:
        raise RuntimeError("ENCRYPTION_KEY is not set; package credentials cannot be encrypted")
    return MultiFernet([Fernet(k.encode("ascii")) for k in keys])


def encryption_keys_valid(raw_keys: str) -> bool:
    """True if ``raw_keys`` parses as one or more Fernet keys."""
    try:
        _fernet(raw_keys)
    except (ValueError, RuntimeError):
        return False
    return True


def encrypt_secret(plaintext: str) -> str:
    """Encrypt with the primary key. Raises RuntimeError when no key is configured."""
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt with any configured key.

    Raises:
        RuntimeError: No key configured.
        cryptography.fernet.InvalidToken: Tampered text, or no configured key matches.
    """
    return _fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")


def rotate_secret(ciphertext: str) -> str:
    """Re-encrypt ``ciphertext`` under the primary key."""
    return _fernet().rotate(ciphertext.encode("utf-8")).decode("ascii")
