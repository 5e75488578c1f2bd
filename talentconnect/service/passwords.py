from __future__ import annotations

from typing import List

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from talentconnect.logging import get_logger
from talentconnect.service.errors import ValidationError

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

_pwd_hasher = PasswordHasher(type=Type.ID)
_dummy_hash: str | None = None


def password_problems(password: str) -> List[str]:
    """Return the strength rules ``password`` breaks; empty when it passes.

    A symbol is any character that is neither alphanumeric nor whitespace.
    """
    problems: List[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        problems.append(f"must be at most {MAX_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in password):
        problems.append("must contain an uppercase letter")
    if not any(c.islower() for c in password):
        problems.append("must contain a lowercase letter")
    if not any(c.isdigit() for c in password):
        problems.append("must contain a digit")
    if not any(not c.isalnum() and not c.isspace() for c in password):
        problems.append("must contain a symbol")
    return problems


def is_strong_password(password: str) -> bool:
    return not password_problems(password)


def validate_password_strength(password: str) -> None:
    problems = password_problems(password)
    if problems:
        raise ValidationError(
            "Password must be at least 8 characters and contain uppercase, "
            "lowercase, number, and special character",
            error_code="WEAK_PASSWORD",
            detail=[{"field": "password", "message": p} for p in problems],
        )


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(stored_hash: str, password: str) -> bool:
    """Constant-time check of ``password`` against an argon2id hash."""
    try:
        return _pwd_hasher.verify(stored_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unverifiable")
        return False


def burn_verification(password: str) -> None:
    """Spend one hash verification so unknown emails cost as much as known ones."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = _pwd_hasher.hash("timing-equalizer-password")
    verify_password(_dummy_hash, password)
