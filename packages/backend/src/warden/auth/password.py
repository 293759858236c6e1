"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks.
The work factor defaults to 10 rounds (WARDEN_BCRYPT_ROUNDS); each
extra round doubles the cost of a hash.

Minimum length is enforced by the auth service before we ever get here;
this module only refuses the empty string.
"""

from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 10


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Passwords are truncated to 72 bytes
    (bcrypt's limit).
    """
    if not password:
        raise ValueError("Password must not be empty")
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash.

    Never raises: a malformed or empty hash is simply a non-match.
    """
    if not password_hash:
        return False
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> bytes:
    return bcrypt.hashpw(b"warden-dummy-password", bcrypt.gensalt(rounds=rounds))


def burn_verify(password: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Spend one bcrypt verification's worth of time and discard the result.

    Used when the email is unknown, so a miss costs the same as a wrong
    password. `rounds` must match the cost real hashes are made with.
    """
    bcrypt.checkpw(password.encode("utf-8")[:72], _dummy_hash(rounds))
