"""Password hashing helpers (argon2 via pwdlib)."""

from __future__ import annotations

from pwdlib import PasswordHash
from pwdlib.exceptions import PwdlibError

_password_hash = PasswordHash.recommended()


def hash_password(password: str) -> str:
    """Hash ``password`` with the recommended pwdlib hasher."""

    candidate = password.strip()
    if not candidate:
        msg = "Password must not be empty"
        raise ValueError(msg)

    return _password_hash.hash(candidate)


def verify_password(password: str, hashed: str) -> bool:
    """Return ``True`` if ``password`` matches ``hashed``."""

    try:
        return _password_hash.verify(password, hashed)
    except PwdlibError:
        return False


__all__ = ["hash_password", "verify_password"]
