"""bcrypt password hashing."""

import bcrypt

# bcrypt ignores everything past 72 bytes
_MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """False for accounts without a password (bot- or Firebase-created users)."""
    if not hashed_password:
        return False
    return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
