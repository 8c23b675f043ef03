"""Client secret and user password hashing.

Client secrets are high-entropy random values and are stored as SHA-256 hex
digests (optionally prefixed ``sha256:``). User passwords are stored as bcrypt
hashes. All comparisons are constant time.
"""

import hashlib
import hmac
import secrets
from typing import Optional, Tuple

import bcrypt


def generate_client_secret() -> Tuple[str, str]:
    """Create a new client secret.

    Returns:
        Tuple[str, str]: (plaintext secret shown once to the owner, stored hash).
    """
    secret = secrets.token_urlsafe(32)
    return secret, hash_client_secret(secret)


def hash_client_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _is_hex_sha256(s: str) -> bool:
    return len(s) == 64 and all(c in "0123456789abcdef" for c in s)


def verify_client_secret(provided: Optional[str], stored: Optional[str]) -> bool:
    """Validate a client secret against its stored value.

    Supports two storage formats:
      1) SHA-256 hex string (64 hex chars), optionally prefixed ``sha256:``.
         The provided secret is hashed and the digests compared.
      2) Opaque value, compared directly.

    Args:
        provided (Optional[str]): Secret presented by the client.
        stored (Optional[str]): Value stored on the client record.

    Returns:
        bool: True when the secrets match.
    """
    if not provided or not stored:
        return False

    stored = stored.strip()
    if stored.lower().startswith("sha256:"):
        stored = stored.split(":", 1)[1].lower()

    if _is_hex_sha256(stored):
        return hmac.compare_digest(hash_client_secret(provided), stored)

    return hmac.compare_digest(provided.encode("utf-8"), stored.encode("utf-8"))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: Optional[str], password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False
