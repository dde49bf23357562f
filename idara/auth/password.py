"""
Password hashing with Argon2id and password policy checks.

Parameters target roughly 250ms per hash with 64MB of memory.
"""

import secrets
import string

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, InvalidHashError, VerificationError

ph = PasswordHasher(
    time_cost=3,        # Number of iterations
    memory_cost=65536,  # 64 MB memory usage
    parallelism=4,      # Number of parallel threads
    hash_len=32,        # Length of the hash in bytes
    salt_len=16,        # Length of the random salt
)

MIN_PASSWORD_LENGTH = 12
SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

COMMON_PASSWORDS = {
    "password123!", "admin123!", "letmein123!", "welcome123!", "changeme123!",
}


def hash_password(password: str) -> str:
    """Hash a password (algorithm, params and salt are embedded in the result)."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored hash. A missing hash never matches."""
    if not password_hash:
        return False
    try:
        return ph.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_rehash(password_hash: str) -> bool:
    """True when the stored hash was made with older parameters."""
    try:
        return ph.check_needs_rehash(password_hash)
    except InvalidHashError:
        return True


def generate_temp_password(length: int = 16) -> str:
    """
    Random password that satisfies ``validate_password_strength``.

    Used for the bootstrap admin account.
    """
    length = max(length, MIN_PASSWORD_LENGTH)
    chars = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice("!@#$%^&*"),
    ]
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def validate_password_strength(password: str) -> list[str]:
    """
    Return the list of policy violations (empty when the password is fine).

    Policy: at least 12 characters with an uppercase letter, a lowercase
    letter, a digit and a special character; not a well-known password.
    """
    issues = []
    if len(password) < MIN_PASSWORD_LENGTH:
        issues.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not any(c.isupper() for c in password):
        issues.append("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        issues.append("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        issues.append("Password must contain at least one digit")
    if not any(c in SPECIAL_CHARS for c in password):
        issues.append("Password must contain at least one special character")
    if password.lower() in COMMON_PASSWORDS:
        issues.append("Password is too common")
    return issues
