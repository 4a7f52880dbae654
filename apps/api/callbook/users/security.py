from __future__ import annotations

import logging

import bcrypt


logger = logging.getLogger("callbook.users")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError as exc:
        logger.warning("password.verify_failed", extra={"error": str(exc)})
        return False
